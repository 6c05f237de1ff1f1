"""Decision, risk and cycle result models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from wavearbiter.models.knowledge import RetrievalResult
from wavearbiter.models.scenario import Direction, ProposalTag, ScenarioProposal, ScenarioScore
from wavearbiter.models.state import TradingState


@dataclass(frozen=True)
class Decision:
    """Final arbitrated decision for one cycle."""
    symbol: str
    timeframe: str
    direction: Direction
    entry_trigger: str
    invalidation: str
    risk_percent: float
    alternate_scenario: str      # Losing label, kept for audit
    state: TradingState
    selected: ProposalTag
    scores: dict[ProposalTag, ScenarioScore]
    reasoning: str               # Full audit trail
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "decision": self.direction.value,
            "entry_trigger": self.entry_trigger,
            "invalidation": self.invalidation,
            "risk_percent": self.risk_percent,
            "alternate_scenario": self.alternate_scenario,
            "state": self.state.value,
            "selected_scenario": self.selected.value,
            "judge_scores": {tag.value: score.to_dict() for tag, score in self.scores.items()},
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RiskContext:
    """Per-user risk counters, owned by the risk-tracking collaborator."""
    active_positions: int = 0
    consecutive_losses: int = 0
    is_trading_enabled: bool = True


@dataclass(frozen=True)
class GateResult:
    """Outcome of the risk gate."""
    allowed: bool
    reason: str | None = None


@dataclass
class CycleResult:
    """Everything one decision cycle produced."""
    run_id: str
    conversation_id: str
    decision: Decision
    proposal_a: ScenarioProposal
    proposal_b: ScenarioProposal
    retrieval: RetrievalResult
    risk_check: GateResult
    recorded: bool  # False when the decision could not be persisted

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "conversation_id": self.conversation_id,
            "decision": self.decision.to_dict(),
            "scenario_a": self.proposal_a.to_dict(),
            "scenario_b": self.proposal_b.to_dict(),
            "rag_context": {
                "total_retrieved": self.retrieval.total_retrieved,
                "top_chunks": self.retrieval.summary(),
            },
            "risk_check": {"allowed": self.risk_check.allowed, "reason": self.risk_check.reason},
            "recorded": self.recorded,
        }
