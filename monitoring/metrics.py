"""
Prometheus metrics for the request guard.
Tracks validation outcomes, security events, blocks and anomaly analyses.
"""

from typing import Optional
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST
)
import threading


class SecurityMetrics:
    """
    Security monitoring metrics for threat detection.
    Each guard gets its own registry unless one is passed in.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        # Validation outcomes (valid, blocked, rate_limit, sql_injection, xss, path_traversal)
        self.requests_validated_total = Counter(
            'security_requests_validated_total',
            'Requests passed through the request guard',
            ['outcome'],
            registry=self.registry
        )

        self.validation_duration = Histogram(
            'security_validation_duration_seconds',
            'Time spent in RequestGuard.validate',
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05],
            registry=self.registry
        )

        # Security events
        self.security_events_total = Counter(
            'security_events_total',
            'Security events recorded',
            ['kind', 'severity'],
            registry=self.registry
        )

        # Block list
        self.blocks_total = Counter(
            'security_blocks_total',
            'Client blocks issued',
            ['reason'],
            registry=self.registry
        )

        self.blocked_clients = Gauge(
            'security_blocked_clients',
            'Currently blocked client keys',
            registry=self.registry
        )

        # Anomaly analysis
        self.anomaly_analyses_total = Counter(
            'security_anomaly_analyses_total',
            'Anomaly analyses performed',
            ['source', 'threat_level'],
            registry=self.registry
        )

    def record_validation(self, outcome: str, duration_seconds: float):
        self.requests_validated_total.labels(outcome=outcome).inc()
        self.validation_duration.observe(duration_seconds)

    def record_event(self, kind: str, severity: str):
        self.security_events_total.labels(kind=kind, severity=severity).inc()

    def record_block(self, reason: str):
        self.blocks_total.labels(reason=reason).inc()

    def update_blocked_clients(self, count: int):
        with self._lock:
            self.blocked_clients.set(count)

    def record_anomaly_analysis(self, source: str, threat_level: str):
        self.anomaly_analyses_total.labels(source=source, threat_level=threat_level).inc()

    def export(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST
