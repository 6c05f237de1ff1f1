"""Event bus for decision, state transition and invalidation events."""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from wavearbiter.models import Event

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({"decision", "state_transition", "invalidation"})
WILDCARD = "*"

Handler = Callable[[Event], None]


@dataclass(frozen=True)
class Subscription:
    callback: Handler
    symbol: str | None = None  # None receives every symbol

    def matches(self, event: Event) -> bool:
        return self.symbol is None or self.symbol == event.symbol


class EventBus:
    """Thread-safe pub/sub bus.

    The orchestrator publishes "decision" and "state_transition" events and
    listens for "invalidation" events sent by external price monitors.
    Subscribers can narrow delivery to one symbol.
    """

    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_types: list[str], callback: Handler, symbol: str | None = None) -> None:
        """Register callback for the given event types.

        Args:
            event_types: Types to receive; ["*"] receives everything
            callback: Called with each matching event
            symbol: Only deliver events for this symbol

        Raises:
            ValueError: If an event type is unknown
        """
        unknown = set(event_types) - EVENT_TYPES - {WILDCARD}
        if unknown:
            raise ValueError(f"Unknown event type(s): {', '.join(sorted(unknown))}")

        name = getattr(callback, "__name__", repr(callback))
        with self._lock:
            for event_type in event_types:
                self._subscriptions[event_type].append(Subscription(callback, symbol))
                logger.debug(f"Subscribed {name} to {event_type}" + (f" ({symbol})" if symbol else ""))

    def unsubscribe(self, callback: Handler) -> None:
        """Remove every subscription of callback."""
        with self._lock:
            for event_type, subs in self._subscriptions.items():
                self._subscriptions[event_type] = [s for s in subs if s.callback != callback]

    def subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(event_type, []))

    def publish(self, event: Event) -> int:
        """Deliver event to matching subscribers.

        A failing subscriber is logged and does not stop delivery to the others.

        Returns:
            Number of subscribers that handled the event without error
        """
        with self._lock:
            targets = [
                s for s in self._subscriptions.get(event.type, []) + self._subscriptions.get(WILDCARD, [])
                if s.matches(event)
            ]

        delivered = 0
        for sub in targets:
            try:
                sub.callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Subscriber {getattr(sub.callback, '__name__', sub.callback)} failed on {event.type}: {e}"
                )
        return delivered
