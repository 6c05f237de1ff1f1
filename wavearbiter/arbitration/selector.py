"""Deterministic selection between two scored scenarios."""
import logging
import random

from wavearbiter.models import ProposalTag, ScenarioScore

logger = logging.getLogger(__name__)

MISSING_STOP_DISTANCE = 999.0
DECISIVE_SCORE_GAP = 2

TAG_NAMES = {ProposalTag.A: "Primary count", ProposalTag.B: "Alternative count"}


def _effective_stop(stop_distance: float | None) -> float:
    # Zero or negative means the evaluator gave no usable stop
    if stop_distance is None or stop_distance <= 0:
        return MISSING_STOP_DISTANCE
    return stop_distance


def select(score_a: ScenarioScore, score_b: ScenarioScore) -> ProposalTag:
    """Pick the winning proposal.

    1. Both break a rule: A, the conservative count
    2. One breaks a rule: the other
    3. Totals differ by 2 or more: the higher total
    4. Otherwise: the smaller stop distance (missing or non-positive counts as
       999%), A on ties
    """
    if not score_a.rule_validity and not score_b.rule_validity:
        return ProposalTag.A
    if not score_a.rule_validity:
        return ProposalTag.B
    if not score_b.rule_validity:
        return ProposalTag.A

    if abs(score_a.total_score - score_b.total_score) >= DECISIVE_SCORE_GAP:
        return ProposalTag.A if score_a.total_score > score_b.total_score else ProposalTag.B

    stop_a = _effective_stop(score_a.stop_distance)
    stop_b = _effective_stop(score_b.stop_distance)
    return ProposalTag.A if stop_a <= stop_b else ProposalTag.B


def select_chat(rng: random.Random) -> ProposalTag:
    """Pick a reply for a non-trading exchange; nothing directional is at stake."""
    return ProposalTag.A if rng.random() > 0.5 else ProposalTag.B


def risk_percent_for(risk_reward: float) -> float:
    """Account risk for the winning proposal's risk/reward estimate."""
    if risk_reward >= 3:
        return 2.0
    if risk_reward >= 2:
        return 1.5
    return 1.0


def build_reasoning(score_a: ScenarioScore, score_b: ScenarioScore, selected: ProposalTag) -> str:
    """Human-readable explanation of why a proposal won."""
    scores = {ProposalTag.A: score_a, ProposalTag.B: score_b}
    winner = scores[selected]
    loser = scores[selected.other]

    parts = [f"{TAG_NAMES[selected]} selected."]
    if not loser.rule_validity:
        parts.append(f"{TAG_NAMES[selected.other]} violated a NEoWave rule.")
    parts.append(f"Score {winner.total_score}/8 vs {loser.total_score}/8.")

    strengths = []
    if winner.invalidation_clarity == 2:
        strengths.append("clear invalidation")
    if winner.risk_reward == 2:
        strengths.append("strong risk/reward")
    if winner.structure_simplicity == 2:
        strengths.append("simple structure")
    if winner.resolution_speed == 2:
        strengths.append("fast resolution")
    if strengths:
        parts.append(f"Strengths: {', '.join(strengths)}.")

    if winner.stop_distance is not None:
        parts.append(f"Stop distance about {winner.stop_distance:.2f}%.")
    if winner.degraded or loser.degraded:
        parts.append("Scoring degraded: neutral fallback used.")

    return " ".join(parts)
