"""
Exception hierarchy for the request guard.

Detection and rate-limit outcomes are normally plain return values from
RequestGuard.validate; the classes below exist so the HTTP edge can turn a
rejection into a generic client-facing response, and so crypto failures have
a precise type.
"""
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categorization for better handling and monitoring."""
    MALFORMED_INPUT = "malformed_input"
    CRYPTOGRAPHY = "cryptography"
    RATE_LIMIT = "rate_limit"
    THREAT = "threat"
    ACCESS = "access"
    EXTERNAL_SERVICE = "external_service"
    SYSTEM = "system"


class GuardError(Exception):
    """Base exception for all request-guard errors with enhanced context."""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        user_message: Optional[str] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.timestamp = datetime.now(timezone.utc)
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self._generate_error_code()
        self.severity = severity
        self.category = category
        self.user_message = user_message or message
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def _generate_error_code(self) -> str:
        """Generate a unique error code for tracking."""
        return f"{self.__class__.__name__.upper()}_{int(self.timestamp.timestamp() * 1000)}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
            "http_status": self.http_status,
        }


# ============================================================================
# CRYPTOGRAPHY EXCEPTIONS
# ============================================================================

class MalformedCiphertextError(GuardError):
    """Ciphertext is not in the ``hex(iv):hex(ciphertext)`` wire form."""

    http_status = 400

    def __init__(self, message: str = "Malformed ciphertext", **kwargs):
        kwargs.setdefault('category', ErrorCategory.MALFORMED_INPUT)
        kwargs.setdefault('user_message', 'Invalid encrypted value.')
        super().__init__(message, **kwargs)


class DecryptionFailureError(GuardError):
    """Ciphertext is well formed but fails the padding check under the key."""

    http_status = 400

    def __init__(self, message: str = "Decryption failed", **kwargs):
        kwargs.setdefault('category', ErrorCategory.CRYPTOGRAPHY)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('user_message', 'Unable to decrypt value.')
        super().__init__(message, **kwargs)


# ============================================================================
# REQUEST REJECTIONS
# ============================================================================

class RateLimitExceededError(GuardError):
    """Client exceeded its request window."""

    http_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('category', ErrorCategory.RATE_LIMIT)
        kwargs.setdefault('user_message', 'Too many requests. Please try again later.')
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.context.update({'retry_after': retry_after})


class ThreatDetectedError(GuardError):
    """A malicious pattern was found in the request."""

    http_status = 400

    def __init__(self, kind: str, message: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.THREAT)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('user_message', 'Invalid request.')
        super().__init__(message or f"Threat detected: {kind}", **kwargs)
        self.kind = kind
        self.context.update({'kind': kind})


class ClientBlockedError(GuardError):
    """Client key is on the block list."""

    http_status = 403

    def __init__(self, message: str = "IP blocked", **kwargs):
        kwargs.setdefault('category', ErrorCategory.ACCESS)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('user_message', 'Access denied.')
        super().__init__(message, **kwargs)


class PayloadTooLargeError(GuardError):
    """Request body exceeds the configured screening limit."""

    http_status = 413

    def __init__(self, max_bytes: int, message: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.MALFORMED_INPUT)
        kwargs.setdefault('user_message', 'Request body too large.')
        super().__init__(message or f"Body exceeds {max_bytes} bytes", **kwargs)
        self.max_bytes = max_bytes
        self.context.update({'max_bytes': max_bytes})


class UnauthorizedAccessError(GuardError):
    """Missing or invalid operator credentials."""

    http_status = 401

    def __init__(self, message: str = "Unauthorized", **kwargs):
        kwargs.setdefault('category', ErrorCategory.ACCESS)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('user_message', 'Authentication required.')
        super().__init__(message, **kwargs)


# ============================================================================
# INTERNAL
# ============================================================================

class ClassifierUnavailableError(GuardError):
    """External anomaly classifier failed; always absorbed by the analyzer."""

    def __init__(self, message: str = "Anomaly classifier unavailable", **kwargs):
        kwargs.setdefault('category', ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault('severity', ErrorSeverity.LOW)
        super().__init__(message, **kwargs)
