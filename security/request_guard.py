"""
Request guard: one verdict per inbound request.

RequestGuard owns all mutable security state (rate limit windows, block list,
event log, escalation counters) for one process. Build it once at
startup and share it; tests build a fresh one with a fake clock.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from config import Settings, settings as default_settings
from monitoring.metrics import SecurityMetrics
from security.block_list import BlockList
from security.escalation import EscalationCounter
from security.event_log import SecurityEventLog
from security.events import SecurityEvent, SecurityEventType, SecuritySeverity
from security.rate_limiter import FixedWindowRateLimiter
from utils.exceptions import ClientBlockedError, RateLimitExceededError, ThreatDetectedError
from utils.input_sanitization import (
    looks_like_path_traversal,
    looks_like_scanner_user_agent,
    looks_like_sql_injection,
    looks_like_suspicious_path,
    looks_like_xss,
    sanitize,
)

if TYPE_CHECKING:
    from security.anomaly_analyzer import AnomalyAnalyzer

logger = logging.getLogger(__name__)

REASON_BLOCKED = "IP blocked"
REASON_RATE_LIMIT = "Rate limit exceeded"
REASON_SQL_INJECTION = "SQL injection detected"
REASON_XSS = "XSS detected"
REASON_PATH_TRAVERSAL = "Path traversal detected"
REASON_SCANNER_USER_AGENT = "Scanner user agent"
REASON_SUSPICIOUS_PATH = "Suspicious path"
REASON_QUERY_INJECTION = "SQL injection in query string"


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for one request. Rejections are values, not exceptions."""
    valid: bool
    blocked: bool
    sanitized: Any = None
    reason: Optional[str] = None
    rejection: Optional[str] = None
    retry_after: Optional[int] = None

    def raise_for_rejection(self) -> None:
        """Raise the GuardError matching this rejection; no-op when valid."""
        if self.valid:
            return
        if self.rejection in ("blocked", "suspicious_activity"):
            raise ClientBlockedError(self.reason or REASON_BLOCKED)
        if self.rejection == "rate_limit":
            raise RateLimitExceededError(self.reason or REASON_RATE_LIMIT, retry_after=self.retry_after)
        raise ThreatDetectedError(self.rejection or "unknown", message=self.reason)


def serialize_body(body: Any) -> str:
    """Comparable string form of a request body."""
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    return json.dumps(body, default=str)


class RequestGuard:
    """Composes block list, rate limiter, pattern detector and event log."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[SecurityMetrics] = None,
    ):
        cfg = app_settings or default_settings
        self.settings = cfg
        self.clock = clock
        self.rate_limiter = FixedWindowRateLimiter(
            max_requests=cfg.rate_limit_max_requests,
            window_seconds=cfg.rate_limit_window_seconds,
            clock=clock,
        )
        self.block_list = BlockList(clock=clock)
        self.event_log = SecurityEventLog(
            capacity=cfg.security_event_capacity,
            retain=cfg.security_event_retain,
        )
        self.metrics = metrics or SecurityMetrics()

        self.rate_limit_block_seconds = cfg.rate_limit_block_seconds
        self.escalation_block_seconds = cfg.escalation_block_seconds
        self.suspicious_activity_block_seconds = cfg.suspicious_activity_block_seconds
        self.payload_sample_length = cfg.payload_sample_length

        # SQL injection detections in bodies
        self.sql_injection_counter = EscalationCounter(
            threshold=cfg.escalation_threshold,
            window_seconds=cfg.escalation_window_seconds,
            clock=clock,
        )
        # Scanner user agents, probe paths and query string injection
        self.suspicious_activity_counter = EscalationCounter(
            threshold=cfg.suspicious_activity_threshold,
            window_seconds=cfg.suspicious_activity_window_seconds,
            clock=clock,
        )

        self.analyzer: Optional["AnomalyAnalyzer"] = None
        self._background_tasks: List[asyncio.Task] = []

        logger.info("🛡️ [REQUEST-GUARD] Request guard initialized")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        client_key: str,
        path: str,
        body: Any,
        user_agent: Optional[str] = None,
    ) -> ValidationResult:
        """
        Run block, rate limit and pattern checks for one request.

        Checks run in order and stop at the first failure. Every failure
        except an existing block records a security event. The caller's
        ``body`` is never modified.

        Args:
            client_key: Client identifier, usually the source IP
            path: Request path, checked for traversal
            body: Deserialized request body (str, dict, list, ...)
            user_agent: Optional user agent, stored on events

        Returns:
            ValidationResult with ``sanitized`` set only when valid
        """
        started = time.perf_counter()
        result = self._validate(client_key, path, body, user_agent)
        self.metrics.record_validation(result.rejection or "valid", time.perf_counter() - started)
        return result

    def _validate(self, client_key, path, body, user_agent) -> ValidationResult:
        if self.block_list.is_blocked(client_key):
            return ValidationResult(valid=False, blocked=True, reason=REASON_BLOCKED, rejection="blocked")

        decision = self.rate_limiter.check(client_key)
        if not decision.allowed:
            self._block(client_key, self.rate_limit_block_seconds, "rate_limit")
            self.record_event(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                client_key,
                SecuritySeverity.MEDIUM,
                user_agent=user_agent,
                path=path,
                was_blocked=True,
            )
            return ValidationResult(
                valid=False,
                blocked=True,
                reason=REASON_RATE_LIMIT,
                rejection="rate_limit",
                retry_after=int(self.rate_limit_block_seconds),
            )

        body_text = serialize_body(body)

        if looks_like_sql_injection(body_text):
            escalated = self.sql_injection_counter.hit(client_key)
            self.record_event(
                SecurityEventType.SQL_INJECTION_ATTEMPT,
                client_key,
                SecuritySeverity.HIGH,
                user_agent=user_agent,
                path=path,
                payload_sample=body_text,
                was_blocked=True,
            )
            if escalated:
                self._block(client_key, self.escalation_block_seconds, "sql_injection_escalation")
            return ValidationResult(
                valid=False, blocked=True, reason=REASON_SQL_INJECTION, rejection="sql_injection"
            )

        if looks_like_xss(body_text):
            self.record_event(
                SecurityEventType.XSS_ATTEMPT,
                client_key,
                SecuritySeverity.HIGH,
                user_agent=user_agent,
                path=path,
                payload_sample=body_text,
                was_blocked=True,
            )
            return ValidationResult(valid=False, blocked=True, reason=REASON_XSS, rejection="xss")

        if looks_like_path_traversal(path):
            self.record_event(
                SecurityEventType.SUSPICIOUS_REQUEST,
                client_key,
                SecuritySeverity.MEDIUM,
                user_agent=user_agent,
                path=path,
                was_blocked=True,
            )
            return ValidationResult(
                valid=False, blocked=True, reason=REASON_PATH_TRAVERSAL, rejection="path_traversal"
            )

        return ValidationResult(valid=True, blocked=False, sanitized=sanitize(body))

    def suspicious_count(self, client_key: str) -> int:
        """SQL injection detections for ``client_key`` in its current tracking window."""
        return self.sql_injection_counter.count(client_key)

    def screen_request(
        self,
        client_key: str,
        path: str,
        query: str = "",
        user_agent: Optional[str] = None,
    ) -> ValidationResult:
        """
        Screen request metadata for scanner activity before the body is read.

        A scanner user agent, a probe path (``.env``, ``wp-admin``, backups)
        or SQL injection in the decoded query string each count as one
        suspicious activity and are rejected. Reaching the threshold within
        the tracking window also blocks the key.

        Returns:
            ValidationResult; valid results carry no sanitized body
        """
        started = time.perf_counter()
        if self.block_list.is_blocked(client_key):
            return ValidationResult(valid=False, blocked=True, reason=REASON_BLOCKED, rejection="blocked")

        kind, severity, sample = SecurityEventType.SUSPICIOUS_REQUEST, SecuritySeverity.MEDIUM, None
        if self.settings.screen_scanner_user_agents and looks_like_scanner_user_agent(user_agent):
            reason = REASON_SCANNER_USER_AGENT
        elif self.settings.screen_suspicious_paths and looks_like_suspicious_path(path):
            reason = REASON_SUSPICIOUS_PATH
        elif self.settings.screen_query_strings and looks_like_sql_injection(query):
            reason = REASON_QUERY_INJECTION
            kind, severity, sample = SecurityEventType.SQL_INJECTION_ATTEMPT, SecuritySeverity.HIGH, query
        else:
            return ValidationResult(valid=True, blocked=False)

        escalated = self.suspicious_activity_counter.hit(client_key)
        self.record_event(
            kind,
            client_key,
            severity,
            user_agent=user_agent,
            path=path,
            payload_sample=sample,
            was_blocked=True,
        )
        if escalated:
            self._block(client_key, self.suspicious_activity_block_seconds, "suspicious_activity")
            logger.warning(f"🚨 [REQUEST-GUARD] {client_key} blocked after repeated suspicious activity")

        self.metrics.record_validation("suspicious_activity", time.perf_counter() - started)
        return ValidationResult(
            valid=False, blocked=True, reason=reason, rejection="suspicious_activity"
        )

    def _block(self, client_key: str, duration: float, reason: str) -> None:
        self.block_list.block(client_key, duration, reason)
        self.metrics.record_block(reason)
        self.metrics.update_blocked_clients(self.block_list.active_count())

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def record_event(
        self,
        kind: SecurityEventType,
        client_key: str,
        severity: SecuritySeverity,
        user_agent: Optional[str] = None,
        path: Optional[str] = None,
        payload_sample: Optional[str] = None,
        was_blocked: bool = False,
    ) -> SecurityEvent:
        """Append a security event; high and critical events are also logged."""
        if payload_sample is not None:
            payload_sample = payload_sample[:self.payload_sample_length]

        event = SecurityEvent(
            kind=kind,
            client_key=client_key,
            severity=severity,
            user_agent=user_agent,
            path=path,
            payload_sample=payload_sample,
            was_blocked=was_blocked,
        )
        self.event_log.append(event)
        self.metrics.record_event(kind.value, severity.value)

        if severity.rank >= SecuritySeverity.HIGH.rank:
            logger.warning(
                f"🚨 [SECURITY] {severity.value.upper()} {kind.value} from {client_key} on {path or '-'}",
                extra={'client_key': client_key, 'security_event': event.event_id},
            )
        return event

    def recent_events(self, limit: int) -> List[SecurityEvent]:
        return self.event_log.recent(limit)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def unblock(self, client_key: str) -> bool:
        """Lift a block and forget the key's rate window and escalation counts."""
        removed = self.block_list.unblock(client_key)
        self.rate_limiter.reset(client_key)
        self.sql_injection_counter.reset(client_key)
        self.suspicious_activity_counter.reset(client_key)
        self.metrics.update_blocked_clients(self.block_list.active_count())
        return removed

    def sweep(self) -> Dict[str, int]:
        """Evict expired rate windows, blocks and escalation counters."""
        swept = {
            "rate_windows": self.rate_limiter.sweep(),
            "blocks": self.block_list.sweep(),
            "counters": self.sql_injection_counter.sweep() + self.suspicious_activity_counter.sweep(),
        }
        self.metrics.update_blocked_clients(self.block_list.active_count())
        return swept

    async def run_analysis(self):
        """Analyze retained events with the attached analyzer, if any."""
        if self.analyzer is None:
            return None
        result = await self.analyzer.analyze(self.event_log.snapshot())
        self.metrics.record_anomaly_analysis(result.source.value, result.threat_level.value)
        return result

    async def start_background_tasks(self) -> None:
        """Start the periodic sweep (and analysis, when configured)."""
        if self._background_tasks:
            return
        self._background_tasks.append(asyncio.create_task(self._sweep_loop()))
        if self.analyzer is not None and self.settings.analysis_interval_seconds > 0:
            self._background_tasks.append(asyncio.create_task(self._analysis_loop()))
        logger.info("🚀 [REQUEST-GUARD] Background maintenance tasks started")

    async def stop_background_tasks(self) -> None:
        for task in self._background_tasks:
            task.cancel()

        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        logger.info("🛑 [REQUEST-GUARD] Background maintenance tasks stopped")

    async def _sweep_loop(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                swept = self.sweep()
                if any(swept.values()):
                    logger.info(f"🧹 [REQUEST-GUARD] Sweep removed {swept}")
            except Exception as e:
                logger.error(f"❌ [REQUEST-GUARD] Sweep failed: {e}")

    async def _analysis_loop(self) -> None:
        interval = self.settings.analysis_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_analysis()
            except Exception as e:
                logger.error(f"❌ [REQUEST-GUARD] Periodic analysis failed: {e}")
