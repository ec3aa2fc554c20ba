"""
Security event types and the immutable event record.
"""
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SecurityEventType(str, Enum):
    """Security event types for categorization."""
    SUSPICIOUS_REQUEST = "suspicious_request"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"
    XSS_ATTEMPT = "xss_attempt"
    BRUTE_FORCE_ATTEMPT = "brute_force_attempt"
    DATA_EXFILTRATION_ATTEMPT = "data_exfiltration_attempt"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    ANOMALY_DETECTED = "anomaly_detected"


class SecuritySeverity(str, Enum):
    """Security event severity levels, ordered by ``rank``."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    SecuritySeverity.LOW: 1,
    SecuritySeverity.MEDIUM: 2,
    SecuritySeverity.HIGH: 3,
    SecuritySeverity.CRITICAL: 4,
}


def generate_event_id() -> str:
    return f"EVT-{int(time.time())}-{secrets.token_hex(6).upper()}"


@dataclass(frozen=True)
class SecurityEvent:
    """One detected security condition. Created once and never mutated."""
    kind: SecurityEventType
    client_key: str
    severity: SecuritySeverity
    user_agent: Optional[str] = None
    path: Optional[str] = None
    payload_sample: Optional[str] = None
    was_blocked: bool = False
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=generate_event_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['kind'] = self.kind.value
        data['severity'] = self.severity.value
        data['occurred_at'] = self.occurred_at.isoformat()
        return data

    def summary(self) -> Dict[str, Any]:
        """Compact form handed to the anomaly classifier."""
        return {
            "type": self.kind.value,
            "client_key": self.client_key,
            "path": self.path,
            "severity": self.severity.value,
            "time": self.occurred_at.isoformat(),
        }
