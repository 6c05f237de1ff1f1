"""Risk gate that can force a decision to HOLD."""
import logging
from dataclasses import replace

from wavearbiter.core.config import RiskConfig
from wavearbiter.models import Decision, Direction, GateResult

logger = logging.getLogger(__name__)


class RiskGate:
    """Checks an arbitrated decision against position and loss limits.

    Checks run in order and stop at the first failure:
    1. Active positions at or above the concurrent-position cap
    2. Consecutive losses at or above the loss threshold
    3. Both proposals' risk/reward sub-scores below the minimum

    The gate never raises; callers inspect the GateResult.
    """

    def __init__(self, config: RiskConfig | None = None):
        self.config = config or RiskConfig()

    def gate(self, decision: Decision, active_positions: int, consecutive_losses: int) -> GateResult:
        max_positions = self.config.max_concurrent_positions
        if active_positions >= max_positions:
            return GateResult(
                allowed=False,
                reason=f"Maximum concurrent positions ({max_positions}) reached",
            )

        max_losses = self.config.consecutive_loss_threshold
        if consecutive_losses >= max_losses:
            return GateResult(
                allowed=False,
                reason=f"{max_losses} consecutive losses - system paused",
            )

        min_rr = self.config.min_risk_reward
        if all(score.risk_reward < min_rr for score in decision.scores.values()):
            return GateResult(
                allowed=False,
                reason=f"Risk/Reward below minimum threshold ({min_rr})",
            )

        return GateResult(allowed=True)

    @staticmethod
    def apply(decision: Decision, result: GateResult) -> Decision:
        """Return the decision, downgraded to HOLD when the gate blocked it."""
        if result.allowed:
            return decision
        logger.info(f"Risk management blocked {decision.symbol} {decision.direction.value}: {result.reason}")
        return replace(
            decision,
            direction=Direction.HOLD,
            reasoning=f"{decision.reasoning} [Risk Override: {result.reason}]",
        )
