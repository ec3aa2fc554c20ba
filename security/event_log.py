"""
Bounded in-memory security event log.
"""
import threading
from collections import Counter
from typing import Dict, List

from security.events import SecurityEvent


class SecurityEventLog:
    """
    Append-only ring of recent security events.

    Once the log grows past ``capacity`` it is cut back to the newest
    ``retain`` events in a single batch, so trimming cost is amortised over
    ``capacity - retain`` appends.
    """

    def __init__(self, capacity: int = 1000, retain: int = 500):
        if retain <= 0 or retain > capacity:
            raise ValueError("retain must be positive and no larger than capacity")
        self.capacity = capacity
        self.retain = retain
        self._events: List[SecurityEvent] = []
        self._lock = threading.Lock()

    def append(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)
            if len(self._events) > self.capacity:
                self._events = self._events[-self.retain:]

    def recent(self, limit: int) -> List[SecurityEvent]:
        """Newest ``limit`` events, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._events[-limit:])

    def snapshot(self) -> List[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def counts_by_kind(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(event.kind.value for event in self._events))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
