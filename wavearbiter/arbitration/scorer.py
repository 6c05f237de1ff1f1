"""Scenario scoring against the rule rubric."""
import logging
from typing import Any

from wavearbiter.models import ProposalTag, ScenarioProposal, ScenarioScore
from wavearbiter.providers.validator import RuleValidator

logger = logging.getLogger(__name__)

SUBSCORE_FIELDS = ("invalidation_clarity", "risk_reward", "structure_simplicity", "resolution_speed")


def _parse_evaluation(tag: ProposalTag, raw: dict[str, Any]) -> ScenarioScore:
    """Turn evaluator output into a ScenarioScore.

    Raises:
        ValueError: If a field is missing or has the wrong type
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Evaluator returned {type(raw).__name__}, expected an object")

    validity = raw.get("rule_validity")
    if not isinstance(validity, bool):
        raise ValueError(f"rule_validity must be a boolean, got {validity!r}")

    subscores = {}
    for name in SUBSCORE_FIELDS:
        value = raw.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        subscores[name] = int(round(value))

    stop = raw.get("stop_distance")
    if stop is not None:
        if isinstance(stop, bool) or not isinstance(stop, (int, float)):
            raise ValueError(f"stop_distance must be a number, got {stop!r}")
        stop = float(stop)

    return ScenarioScore(tag=tag, rule_validity=validity, stop_distance=stop, **subscores)


class ScenarioScorer:
    """Scores a proposal through an external rule validator.

    Evaluator failures never abort a cycle: the proposal gets the neutral
    score (all sub-scores 1, valid, 2.0% stop) marked as degraded.
    """

    def __init__(self, validator: RuleValidator):
        self.validator = validator

    async def score(self, tag: ProposalTag, proposal: ScenarioProposal, context_text: str) -> ScenarioScore:
        try:
            raw = await self.validator.evaluate(proposal, context_text)
            result = _parse_evaluation(tag, raw)
        except Exception as e:
            logger.warning(f"Scoring of proposal {tag.value} failed, using neutral score: {e}")
            return ScenarioScore.neutral(tag)

        logger.debug(
            "TRANSFORM: Scenario score",
            extra={
                "extra_data": {
                    "action": "transform_output",
                    "transform": "scenario_score",
                    **result.to_dict(),
                }
            },
        )
        return result
