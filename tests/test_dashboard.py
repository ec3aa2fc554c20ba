"""
Tests for the dashboard aggregator.
"""
import pytest

from models.security import ThreatLevel
from security.dashboard import SecurityDashboard
from security.events import SecurityEventType, SecuritySeverity


@pytest.mark.unit
class TestSecurityDashboard:

    def test_empty_snapshot_reports_low(self, guard):
        view = SecurityDashboard(guard).snapshot()
        assert view.blocked_count == 0
        assert view.recent_events == []
        assert view.events_by_type == {}
        assert view.threat_level == ThreatLevel.LOW

    def test_snapshot_after_attacks(self, guard):
        guard.validate("10.0.0.1", "/api", {"q": "1; DROP TABLE users;"})
        guard.validate("10.0.0.1", "/api", {"q": "1; DROP TABLE users;"})
        guard.validate("10.0.0.1", "/api", {"q": "1; DROP TABLE users;"})
        guard.validate("10.0.0.2", "/api", {"c": "<script>alert(1)</script>"})
        guard.validate("10.0.0.3", "../../etc/passwd", None)

        view = SecurityDashboard(guard).snapshot()
        assert view.blocked_count == 1
        assert view.events_by_type == {
            "sql_injection_attempt": 3,
            "xss_attempt": 1,
            "suspicious_request": 1,
        }
        assert view.threat_level == ThreatLevel.LOW
        assert view.recent_events[-1].kind == "suspicious_request"
        assert view.tracked_clients == 3

    def test_recent_events_capped_and_counts_cover_full_log(self, guard):
        for i in range(30):
            guard.record_event(SecurityEventType.BRUTE_FORCE_ATTEMPT, f"c{i}", SecuritySeverity.LOW)

        view = SecurityDashboard(guard).snapshot()
        assert len(view.recent_events) == 20
        assert view.recent_events[0].client_key == "c10"
        assert view.recent_events[-1].client_key == "c29"
        assert view.events_by_type == {"brute_force_attempt": 30}

    def test_threat_level_uses_fallback_rule(self, guard):
        for i in range(6):
            guard.record_event(SecurityEventType.XSS_ATTEMPT, f"c{i}", SecuritySeverity.HIGH)
        assert SecurityDashboard(guard).snapshot().threat_level == ThreatLevel.MEDIUM

        guard.record_event(SecurityEventType.DATA_EXFILTRATION_ATTEMPT, "c", SecuritySeverity.CRITICAL)
        assert SecurityDashboard(guard).snapshot().threat_level == ThreatLevel.HIGH
