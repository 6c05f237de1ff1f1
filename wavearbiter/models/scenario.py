"""Scenario proposal and score models."""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any


class Direction(Enum):
    """Directional call of a scenario."""
    LONG = "LONG"
    SHORT = "SHORT"
    HOLD = "HOLD"


class ProposalTag(Enum):
    """Which provider produced a proposal. A is the primary (conservative) count."""
    A = "A"
    B = "B"

    @property
    def other(self) -> "ProposalTag":
        return ProposalTag.B if self is ProposalTag.A else ProposalTag.A


class ProposalFormatError(ValueError):
    """Raised when a provider returns a proposal that does not match the contract."""

    pass


REQUIRED_PROPOSAL_FIELDS = (
    "direction",
    "scenario_label",
    "confirmation_trigger",
    "invalidation_level",
    "risk_reward_estimate",
    "rule_citations",
)


@dataclass(frozen=True)
class ScenarioProposal:
    """Structured market claim produced by an external analysis provider."""
    direction: Direction
    scenario_label: str
    confirmation_trigger: str
    invalidation_level: str
    risk_reward_estimate: float
    rule_citations: tuple[str, ...] = ()
    rationale: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ScenarioProposal":
        """Build a proposal from provider JSON, validating the contract.

        Raises:
            ProposalFormatError: On missing fields, unknown direction,
                non-numeric risk/reward or non-list citations
        """
        for name in REQUIRED_PROPOSAL_FIELDS:
            if name not in raw:
                raise ProposalFormatError(f"Missing required field: {name}")

        try:
            direction = Direction(str(raw["direction"]).upper())
        except ValueError as e:
            raise ProposalFormatError(f"Invalid direction: {raw['direction']}") from e

        rr = raw["risk_reward_estimate"]
        if isinstance(rr, bool) or not isinstance(rr, (int, float)):
            raise ProposalFormatError("risk_reward_estimate must be a number")

        citations = raw["rule_citations"]
        if not isinstance(citations, list):
            raise ProposalFormatError("rule_citations must be a list")

        # Primary providers call it "explanation", alternative ones "alternative_reasoning"
        rationale = raw.get("rationale") or raw.get("explanation") or raw.get("alternative_reasoning")

        return cls(
            direction=direction,
            scenario_label=str(raw["scenario_label"]),
            confirmation_trigger=str(raw["confirmation_trigger"]),
            invalidation_level=str(raw["invalidation_level"]),
            risk_reward_estimate=float(rr),
            rule_citations=tuple(str(c) for c in citations),
            rationale=rationale,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization and prompts."""
        d = asdict(self)
        d["direction"] = self.direction.value
        d["rule_citations"] = list(self.rule_citations)
        return d


def _clamp_subscore(value: Any) -> int:
    return max(0, min(2, int(value)))


@dataclass(frozen=True)
class ScenarioScore:
    """Rubric evaluation of one proposal.

    Sub-scores are clamped to 0..2. The total is derived, never supplied:
    it is the sum of the sub-scores, or 0 when the proposal breaks a rule.
    """
    tag: ProposalTag
    rule_validity: bool
    invalidation_clarity: int
    risk_reward: int
    structure_simplicity: int
    resolution_speed: int
    stop_distance: float | None = None  # percent
    degraded: bool = False  # neutral fallback was used

    def __post_init__(self):
        for name in ("invalidation_clarity", "risk_reward", "structure_simplicity", "resolution_speed"):
            object.__setattr__(self, name, _clamp_subscore(getattr(self, name)))

    @property
    def total_score(self) -> int:
        if not self.rule_validity:
            return 0
        return (
            self.invalidation_clarity
            + self.risk_reward
            + self.structure_simplicity
            + self.resolution_speed
        )

    @classmethod
    def neutral(cls, tag: ProposalTag) -> "ScenarioScore":
        """Fallback used when the evaluator cannot produce a score."""
        return cls(
            tag=tag,
            rule_validity=True,
            invalidation_clarity=1,
            risk_reward=1,
            structure_simplicity=1,
            resolution_speed=1,
            stop_distance=2.0,
            degraded=True,
        )

    @classmethod
    def zero(cls, tag: ProposalTag) -> "ScenarioScore":
        """Empty score used for non-trading (chat) cycles."""
        return cls(
            tag=tag,
            rule_validity=True,
            invalidation_clarity=0,
            risk_reward=0,
            structure_simplicity=0,
            resolution_speed=0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tag": self.tag.value,
            "rule_validity": self.rule_validity,
            "invalidation_clarity": self.invalidation_clarity,
            "risk_reward": self.risk_reward,
            "structure_simplicity": self.structure_simplicity,
            "resolution_speed": self.resolution_speed,
            "total_score": self.total_score,
            "stop_distance": self.stop_distance,
            "degraded": self.degraded,
        }
