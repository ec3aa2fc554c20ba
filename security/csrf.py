"""
Per-session CSRF token store with expiry.
"""
import threading
import time
from typing import Callable, Dict, Tuple

from utils.security import generate_csrf_token, validate_csrf_token


class CSRFTokenStore:
    """Issue and check one CSRF token per session id."""

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._tokens: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, session_id: str) -> str:
        token = generate_csrf_token()
        with self._lock:
            self._tokens[session_id] = (token, self._clock() + self.ttl_seconds)
        return token

    def validate(self, session_id: str, token: str) -> bool:
        with self._lock:
            stored = self._tokens.get(session_id)
            if stored is None:
                return False
            stored_token, expires_at = stored
            if self._clock() >= expires_at:
                del self._tokens[session_id]
                return False
        return validate_csrf_token(token, stored_token)

    def revoke(self, session_id: str) -> None:
        with self._lock:
            self._tokens.pop(session_id, None)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [sid for sid, (_, expires_at) in self._tokens.items() if now >= expires_at]
            for sid in expired:
                del self._tokens[sid]
        return len(expired)
