"""
Read-only operational view over the guard's event log and block list.
"""
from collections import Counter
from typing import Optional

from models.security import DashboardView, SecurityEventView
from security.anomaly_analyzer import fallback_threat_level
from security.events import SecurityEvent
from security.request_guard import RequestGuard


def event_view(event: SecurityEvent) -> SecurityEventView:
    return SecurityEventView(**event.to_dict())


class SecurityDashboard:
    """Aggregates guard state for operators. Never calls the external classifier."""

    def __init__(self, guard: RequestGuard, recent_limit: Optional[int] = None):
        self.guard = guard
        self.recent_limit = recent_limit or guard.settings.dashboard_recent_events

    def snapshot(self) -> DashboardView:
        events = self.guard.event_log.snapshot()
        return DashboardView(
            blocked_count=self.guard.block_list.active_count(),
            recent_events=[event_view(e) for e in events[-self.recent_limit:]],
            events_by_type=dict(Counter(e.kind.value for e in events)),
            threat_level=fallback_threat_level(events),
            tracked_clients=len(self.guard.rate_limiter),
        )
