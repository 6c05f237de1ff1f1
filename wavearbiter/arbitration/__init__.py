"""Scenario scoring and arbitration."""

from wavearbiter.arbitration.scorer import ScenarioScorer
from wavearbiter.arbitration.selector import build_reasoning, risk_percent_for, select, select_chat

__all__ = [
    "ScenarioScorer",
    "build_reasoning",
    "risk_percent_for",
    "select",
    "select_chat",
]
