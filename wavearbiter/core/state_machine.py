"""Trading state machine for one (conversation, symbol, timeframe).

The machine moves a trade setup through:

    WAITING -> BREAKOUT_WATCH -> CONFIRMED_IMPULSE | CONFIRMED_CORRECTION

Any HOLD call returns it to WAITING. INVALIDATED_RESET is only entered through
invalidate(), which external price monitors drive; the machine leaves it on
the next cycle or once the reset cooldown expires.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from wavearbiter.models import Direction, StateKey, StateRecord, TradingState

logger = logging.getLogger(__name__)

DEFAULT_RESET_COOLDOWN_SECONDS = 5.0

TRANSITION_TABLE: dict[TradingState, frozenset[TradingState]] = {
    TradingState.WAITING: frozenset({
        TradingState.BREAKOUT_WATCH,
        TradingState.INVALIDATED_RESET,
    }),
    TradingState.BREAKOUT_WATCH: frozenset({
        TradingState.CONFIRMED_IMPULSE,
        TradingState.CONFIRMED_CORRECTION,
        TradingState.WAITING,
        TradingState.INVALIDATED_RESET,
    }),
    TradingState.CONFIRMED_IMPULSE: frozenset({
        TradingState.WAITING,
        TradingState.INVALIDATED_RESET,
    }),
    TradingState.CONFIRMED_CORRECTION: frozenset({
        TradingState.WAITING,
        TradingState.INVALIDATED_RESET,
    }),
    TradingState.INVALIDATED_RESET: frozenset({
        TradingState.WAITING,
    }),
}

STATE_DESCRIPTIONS = {
    TradingState.WAITING: "Waiting for an entry opportunity",
    TradingState.BREAKOUT_WATCH: "Watching for breakout - preparing entry",
    TradingState.CONFIRMED_IMPULSE: "Impulse wave confirmed - trend in progress",
    TradingState.CONFIRMED_CORRECTION: "Correction wave confirmed - retracement in progress",
    TradingState.INVALIDATED_RESET: "Invalidated - re-evaluation required",
}


class IllegalTransitionError(Exception):
    """Raised when a transition is not in the table for the current state."""

    def __init__(self, current: TradingState, target: TradingState):
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition {current.value} -> {target.value}")


def allowed_next_states(state: TradingState) -> frozenset[TradingState]:
    """States reachable from state, excluding staying put."""
    return TRANSITION_TABLE[state]


def next_state(current: TradingState, direction: Direction, label: str) -> TradingState:
    """Compute the state that follows a winning scenario.

    Args:
        current: Current trading state
        direction: Winning scenario direction
        label: Winning scenario label

    Returns:
        The next trading state
    """
    if direction == Direction.HOLD:
        return TradingState.WAITING

    if current == TradingState.WAITING:
        return TradingState.BREAKOUT_WATCH

    if current == TradingState.BREAKOUT_WATCH:
        lowered = label.lower()
        if "impulse" in lowered:
            return TradingState.CONFIRMED_IMPULSE
        if "correction" in lowered:
            return TradingState.CONFIRMED_CORRECTION
        return TradingState.BREAKOUT_WATCH

    if current in (TradingState.CONFIRMED_IMPULSE, TradingState.CONFIRMED_CORRECTION):
        return current

    # INVALIDATED_RESET
    return TradingState.WAITING


@dataclass(frozen=True)
class StateChange:
    """One entry in a machine's history."""
    state: TradingState
    timestamp: datetime
    trigger: str


class TradingStateMachine:
    """Tracks trade-setup progress and enforces the transition table."""

    def __init__(
        self,
        initial_state: TradingState = TradingState.WAITING,
        reset_cooldown_seconds: float = DEFAULT_RESET_COOLDOWN_SECONDS,
        reset_deadline: datetime | None = None,
        now: datetime | None = None,
    ):
        self._state = initial_state
        self.reset_cooldown = timedelta(seconds=reset_cooldown_seconds)
        self.reset_deadline = reset_deadline
        self._history: list[StateChange] = [
            StateChange(initial_state, now or datetime.now(), "initial")
        ]

    @property
    def state(self) -> TradingState:
        return self._state

    @property
    def history(self) -> list[StateChange]:
        return list(self._history)

    def can_transition(self, target: TradingState) -> bool:
        """Check whether target is reachable (staying put is always allowed)."""
        return target == self._state or target in TRANSITION_TABLE[self._state]

    def transition(self, target: TradingState, trigger: str, now: datetime | None = None) -> TradingState:
        """Move to target state.

        Raises:
            IllegalTransitionError: If target is not allowed from the current state
        """
        if not self.can_transition(target):
            raise IllegalTransitionError(self._state, target)

        if target == self._state:
            return self._state

        now = now or datetime.now()
        logger.info(f"State transition: {self._state.value} -> {target.value} ({trigger})")

        if target == TradingState.INVALIDATED_RESET:
            self.reset_deadline = now + self.reset_cooldown
        else:
            self.reset_deadline = None

        self._state = target
        self._history.append(StateChange(target, now, trigger))
        return target

    def advance(self, direction: Direction, label: str, now: datetime | None = None) -> TradingState:
        """Apply a winning scenario to the machine."""
        target = next_state(self._state, direction, label)
        return self.transition(target, f"{direction.value}: {label}", now=now)

    def invalidate(self, trigger: str = "Invalidation level hit", now: datetime | None = None) -> TradingState:
        """Enter INVALIDATED_RESET and start the reset cooldown."""
        return self.transition(TradingState.INVALIDATED_RESET, trigger, now=now)

    def reset(self, now: datetime | None = None) -> TradingState:
        """Return to WAITING manually."""
        return self.transition(TradingState.WAITING, "Manual reset", now=now)

    def recover_if_expired(self, now: datetime | None = None) -> bool:
        """Return to WAITING if the reset cooldown has passed.

        Returns:
            True if the machine recovered
        """
        if self._state != TradingState.INVALIDATED_RESET or self.reset_deadline is None:
            return False
        now = now or datetime.now()
        if now < self.reset_deadline:
            return False
        self.transition(TradingState.WAITING, "Auto-recovery from invalidation", now=now)
        return True

    def describe(self) -> str:
        return STATE_DESCRIPTIONS[self._state]

    def state_duration(self, now: datetime | None = None) -> timedelta:
        """Time spent in the current state."""
        return (now or datetime.now()) - self._history[-1].timestamp

    @classmethod
    def from_record(
        cls,
        record: StateRecord | None,
        reset_cooldown_seconds: float = DEFAULT_RESET_COOLDOWN_SECONDS,
    ) -> "TradingStateMachine":
        """Restore a machine from persistence; a missing record starts at WAITING."""
        if record is None:
            return cls(reset_cooldown_seconds=reset_cooldown_seconds)
        return cls(
            initial_state=record.state,
            reset_cooldown_seconds=reset_cooldown_seconds,
            reset_deadline=record.reset_deadline,
            now=record.updated_at,
        )

    def to_record(self, key: StateKey, state_data: dict[str, Any] | None = None,
                  now: datetime | None = None) -> StateRecord:
        """Snapshot the machine for persistence."""
        return StateRecord(
            key=key,
            state=self._state,
            state_data=state_data or {},
            reset_deadline=self.reset_deadline,
            updated_at=now or datetime.now(),
        )
