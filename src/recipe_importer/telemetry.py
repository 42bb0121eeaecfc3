"""Abstain telemetry.

A fixed-capacity, newest-first record of the imports a model declined.
Shared across concurrent imports; ``record`` is the only mutation.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import SupportRates

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 20


@dataclass(frozen=True)
class AbstainEvent:
    """One abstain occurrence."""

    source: str
    reason: str
    missing: tuple[str, ...] = ()
    support: SupportRates | None = None
    evidence_sizes: dict[str, int] = field(default_factory=dict)
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AbstainTelemetry:
    """Ring buffer of ``AbstainEvent`` records, most recent first.

    Example:
        >>> telemetry = AbstainTelemetry(capacity=2)
        >>> for reason in ("a", "b", "c"):
        ...     telemetry.record(AbstainEvent(source="text", reason=reason))
        >>> [event.reason for event in telemetry.recent()]
        ['c', 'b']
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Telemetry capacity must be at least 1")
        self.capacity = capacity
        self._events: deque[AbstainEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, event: AbstainEvent) -> None:
        """Insert ``event`` at index 0, evicting the oldest when full."""
        with self._lock:
            self._events.appendleft(event)
        logger.info(f"Recorded abstain from {event.source}: {event.reason}")

    def recent(self) -> list[AbstainEvent]:
        """Snapshot of the buffer, newest first."""
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
