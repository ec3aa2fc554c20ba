"""
Windowed hit counters that decide when a client key is escalated to a block.

A key's tracking window opens on its first hit and lasts ``window_seconds``.
A hit landing at or after the window's end starts a fresh count, so slow
trickles of detections never add up to an escalation.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class HitRecord:
    count: int
    first_seen: float


class EscalationCounter:
    """Thread-safe per-key hit counter with a threshold and a tracking window."""

    def __init__(
        self,
        threshold: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: Dict[str, HitRecord] = {}
        self._lock = threading.Lock()

    def _expired(self, record: HitRecord, now: float) -> bool:
        return now >= record.first_seen + self.window_seconds

    def hit(self, key: str) -> bool:
        """Count one hit; True when ``key`` reached the threshold (its record is then cleared)."""
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None or self._expired(record, now):
                record = HitRecord(count=0, first_seen=now)
                self._records[key] = record

            record.count += 1
            if record.count >= self.threshold:
                del self._records[key]
                return True
            return False

    def count(self, key: str) -> int:
        with self._lock:
            record = self._records.get(key)
            if record is None or self._expired(record, self._clock()):
                return 0
            return record.count

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def sweep(self) -> int:
        """Drop records whose tracking window has elapsed. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, record in self._records.items() if self._expired(record, now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"🧹 [ESCALATION] Swept {len(expired)} expired counters")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
