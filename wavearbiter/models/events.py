"""Event model for the decision core."""
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any


@dataclass
class Event:
    """Base event type for all system events."""
    type: str                    # "decision", "state_transition", "invalidation"
    conversation_id: str
    symbol: str
    timeframe: str
    source: str                  # "orchestrator", "price_monitor", etc.
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d
