"""
Fixed-window rate limiter keyed by client.

Each key owns a RateLimitRecord. Windows are half-open: a request landing
exactly at ``window_start + window_seconds`` opens a new window. Blocking
after a violation is the Block List's job, not the counter's.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_at,
            "retry_after": self.retry_after,
        }


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter per client key."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it may proceed."""
        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None or now >= record.window_start + self.window_seconds:
                record = RateLimitRecord(count=1, window_start=now)
                self._records[key] = record
            else:
                record.count += 1

            reset_at = record.window_start + self.window_seconds
            allowed = record.count <= self.max_requests
            remaining = max(0, self.max_requests - record.count)

        retry_after = 0 if allowed else max(1, int(reset_at - now + 0.999))
        if not allowed:
            logger.debug(f"🚫 [RATE-LIMIT] {key} over limit ({self.max_requests}/{self.window_seconds}s)")
        return RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            limit=self.max_requests,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def sweep(self) -> int:
        """Drop records whose window has elapsed. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, record in self._records.items()
                if now >= record.window_start + self.window_seconds
            ]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"🧹 [RATE-LIMIT] Swept {len(expired)} expired windows")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
