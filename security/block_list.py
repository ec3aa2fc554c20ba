"""
Temporary client block list with expiry.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockEntry:
    client_key: str
    blocked_until: float
    reason: str = ""


class BlockList:
    """
    Set of blocked client keys, each with an expiry on the injected clock.

    Expired entries are evicted on read and by :meth:`sweep`; an entry is
    never reported as blocked once ``now >= blocked_until``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, BlockEntry] = {}
        self._lock = threading.Lock()

    def block(self, key: str, duration_seconds: float, reason: str = "") -> BlockEntry:
        """Insert or overwrite the entry for ``key``."""
        with self._lock:
            entry = BlockEntry(
                client_key=key,
                blocked_until=self._clock() + duration_seconds,
                reason=reason,
            )
            self._entries[key] = entry
        logger.warning(f"🚨 [SECURITY] Blocked {key} for {duration_seconds:.0f}s ({reason or 'unspecified'})")
        return entry

    def is_blocked(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() >= entry.blocked_until:
                del self._entries[key]
                return False
            return True

    def blocked_until(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._clock() >= entry.blocked_until:
                return None
            return entry.blocked_until

    def unblock(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info(f"🔓 [SECURITY] Unblocked {key}")
        return removed

    def sweep(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.blocked_until]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def active_keys(self) -> List[str]:
        with self._lock:
            now = self._clock()
            return [key for key, entry in self._entries.items() if now < entry.blocked_until]

    def active_count(self) -> int:
        return len(self.active_keys())
