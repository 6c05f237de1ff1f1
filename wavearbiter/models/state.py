"""Trading state models."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TradingState(Enum):
    """Progress of a trade setup for one (conversation, symbol, timeframe)."""
    WAITING = "WAITING"
    BREAKOUT_WATCH = "BREAKOUT_WATCH"
    CONFIRMED_IMPULSE = "CONFIRMED_IMPULSE"
    CONFIRMED_CORRECTION = "CONFIRMED_CORRECTION"
    INVALIDATED_RESET = "INVALIDATED_RESET"


@dataclass(frozen=True)
class StateKey:
    """Scope of one state machine."""
    conversation_id: str
    symbol: str
    timeframe: str

    def __str__(self) -> str:
        return f"{self.conversation_id}/{self.symbol}/{self.timeframe}"


@dataclass
class StateRecord:
    """Persisted trading state for one key."""
    key: StateKey
    state: TradingState
    state_data: dict[str, Any] = field(default_factory=dict)
    reset_deadline: datetime | None = None
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "conversation_id": self.key.conversation_id,
            "symbol": self.key.symbol,
            "timeframe": self.key.timeframe,
            "current_state": self.state.value,
            "state_data": self.state_data,
            "reset_deadline": self.reset_deadline.isoformat() if self.reset_deadline else None,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateRecord":
        """Rebuild a record from its serialized form."""
        deadline = data.get("reset_deadline")
        return cls(
            key=StateKey(
                conversation_id=data["conversation_id"],
                symbol=data["symbol"],
                timeframe=data["timeframe"],
            ),
            state=TradingState(data["current_state"]),
            state_data=data.get("state_data") or {},
            reset_deadline=datetime.fromisoformat(deadline) if deadline else None,
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
