"""Data models for the decision core."""

from wavearbiter.models.events import Event
from wavearbiter.models.knowledge import FragmentCategory, KnowledgeFragment, ScoredFragment, RetrievalResult
from wavearbiter.models.scenario import (
    Direction,
    ProposalTag,
    ProposalFormatError,
    ScenarioProposal,
    ScenarioScore,
)
from wavearbiter.models.state import TradingState, StateKey, StateRecord
from wavearbiter.models.decision import Decision, RiskContext, GateResult, CycleResult

__all__ = [
    "Event",
    "FragmentCategory",
    "KnowledgeFragment",
    "ScoredFragment",
    "RetrievalResult",
    "Direction",
    "ProposalTag",
    "ProposalFormatError",
    "ScenarioProposal",
    "ScenarioScore",
    "TradingState",
    "StateKey",
    "StateRecord",
    "Decision",
    "RiskContext",
    "GateResult",
    "CycleResult",
]
