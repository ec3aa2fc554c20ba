"""
HTTP-level tests for the security middleware and operator router.
"""
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from main import create_app
from middleware.security_middleware import get_client_ip
from security.request_guard import RequestGuard
from security.events import SecurityEventType

SQLI_NOTE = "1; DROP TABLE users;"


@pytest.mark.integration
@pytest.mark.security
class TestRequestSecurityMiddleware:

    def test_health_is_exempt_and_has_headers(self, client, guard):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert len(guard.rate_limiter) == 0

    def test_benign_post_reaches_route_sanitized(self, client):
        response = client.post("/echo", json={"note": "  <b>thanks</b>  ", "qty": 2})
        assert response.status_code == 200
        assert response.json() == {"sanitized": {"note": "<b>thanks</b>", "qty": 2}}
        assert "Content-Security-Policy" in response.headers

    def test_form_body_is_checked(self, client):
        response = client.post("/echo", data={"comment": "<script>alert(1)</script>"})
        assert response.status_code == 400

    def test_sql_injection_rejected_without_echo(self, client, guard):
        response = client.post("/echo", json={"note": SQLI_NOTE})
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["type"] == "sql_injection"
        assert body["error"]["message"] == "Invalid request."
        assert "DROP" not in response.text
        assert guard.recent_events(1)[0].kind == SecurityEventType.SQL_INJECTION_ATTEMPT

    def test_xss_rejected(self, client):
        response = client.post("/echo", content="<script>alert(1)</script>",
                               headers={"Content-Type": "text/plain"})
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "xss"
        assert "<script>" not in response.text

    def test_encoded_path_traversal_rejected(self, client):
        response = client.get("/static/..%2f..%2fetc/passwd")
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "path_traversal"

    def test_rate_limit_then_block(self, client):
        for _ in range(5):
            assert client.get("/items").status_code == 200

        limited = client.get("/items")
        assert limited.status_code == 429
        assert limited.headers["Retry-After"] == "300"
        assert limited.json()["error"]["type"] == "rate_limit"

        blocked = client.get("/items")
        assert blocked.status_code == 403
        assert blocked.json()["error"]["type"] == "blocked"

    def test_forwarded_ip_is_the_client_key(self, client, guard):
        for _ in range(6):
            client.get("/items", headers={"X-Forwarded-For": "198.51.100.9, 10.0.0.1"})
        assert guard.block_list.is_blocked("198.51.100.9")
        assert client.get("/items", headers={"X-Forwarded-For": "198.51.100.10"}).status_code == 200

    def test_escalation_blocks_subsequent_requests(self, client, guard):
        for _ in range(3):
            assert client.post("/echo", json={"note": SQLI_NOTE}).status_code == 400
        response = client.post("/echo", json={"note": "hello"})
        assert response.status_code == 403

    def test_scanner_user_agent_rejected(self, client, guard):
        response = client.get("/items", headers={"User-Agent": "sqlmap/1.7"})
        assert response.status_code == 403
        [event] = guard.recent_events(1)
        assert event.kind == SecurityEventType.SUSPICIOUS_REQUEST
        assert event.user_agent == "sqlmap/1.7"

    def test_query_string_injection_rejected(self, client, guard):
        response = client.get("/items", params={"id": "1 OR 1=1"})
        assert response.status_code == 403
        assert response.json()["error"]["type"] == "suspicious_activity"
        assert "1=1" not in response.text
        assert guard.recent_events(1)[0].kind == SecurityEventType.SQL_INJECTION_ATTEMPT

    def test_ordinary_query_string_passes(self, client):
        assert client.get("/items", params={"page": "2", "sort": "name"}).status_code == 200

    @pytest.mark.parametrize("path", ["/.env", "/.git/config", "/wp-login.php", "/backup.sql"])
    def test_probe_paths_rejected(self, client, path):
        response = client.get(path)
        assert response.status_code == 403
        assert response.json()["error"]["type"] == "suspicious_activity"

    def test_repeated_scanning_blocks_the_client(self, client, guard):
        for _ in range(5):
            assert client.get("/.env").status_code == 403
        assert guard.block_list.is_blocked("testclient")

        response = client.get("/items")
        assert response.status_code == 403
        assert response.json()["error"]["type"] == "blocked"

    def test_large_xss_body_is_rejected_quickly(self, client):
        started = time.perf_counter()
        response = client.post("/echo", content="<script>" * 8192, headers={"Content-Type": "text/plain"})
        assert response.status_code == 400
        assert time.perf_counter() - started < 2.0

    def test_oversized_body_rejected(self, test_settings, clock):
        cfg = test_settings.model_copy(update={"max_body_bytes": 1024})
        app = create_app(cfg, guard=RequestGuard(cfg, clock=clock), configure_logging=False)

        @app.post("/upload")
        async def upload():
            return {"ok": True}

        with TestClient(app) as client:
            response = client.post("/upload", content="x" * 2048, headers={"Content-Type": "text/plain"})
            assert response.status_code == 413
            assert response.json()["error"]["type"] == "payload_too_large"
            assert client.post("/upload", content="x" * 512, headers={"Content-Type": "text/plain"}).status_code == 200


@pytest.mark.unit
class TestClientIP:

    def _request(self, headers, host="192.0.2.1"):
        request = MagicMock()
        request.headers = headers
        request.client.host = host
        return request

    def test_prefers_cloudflare_header(self):
        request = self._request({"CF-Connecting-IP": "203.0.113.1", "X-Forwarded-For": "203.0.113.2"})
        assert get_client_ip(request) == "203.0.113.1"

    def test_skips_invalid_values(self):
        request = self._request({"X-Forwarded-For": "not-an-ip", "X-Real-IP": "203.0.113.3"})
        assert get_client_ip(request) == "203.0.113.3"

    def test_falls_back_to_peer(self):
        assert get_client_ip(self._request({})) == "192.0.2.1"


@pytest.mark.integration
class TestSecurityRouter:

    def test_dashboard_requires_admin_token(self, client, guard):
        response = client.get("/api/v1/security/dashboard")
        assert response.status_code == 401
        assert response.json()["error"]["type"] == "access"
        assert guard.recent_events(1)[0].kind == SecurityEventType.UNAUTHORIZED_ACCESS

        wrong = client.get("/api/v1/security/dashboard", headers={"X-Admin-Token": "nope"})
        assert wrong.status_code == 401

    def test_dashboard(self, client, admin_headers):
        client.post("/echo", json={"note": SQLI_NOTE})
        response = client.get("/api/v1/security/dashboard", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["blocked_count"] == 0
        assert data["events_by_type"] == {"sql_injection_attempt": 1}
        assert data["threat_level"] == "low"
        assert data["recent_events"][0]["kind"] == "sql_injection_attempt"

    def test_analyze_uses_fallback(self, client, admin_headers):
        client.post("/echo", json={"note": SQLI_NOTE})
        response = client.post("/api/v1/security/analyze", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "fallback"
        assert data["should_alert"] is True
        assert data["threat_level"] == "low"

    def test_events_listing(self, client, admin_headers):
        client.post("/echo", json={"c": "<iframe src=x>"})
        response = client.get("/api/v1/security/events?limit=5", headers=admin_headers)
        assert response.status_code == 200
        [event] = response.json()
        assert event["kind"] == "xss_attempt"
        assert event["severity"] == "high"

    def test_unblock(self, client, guard, admin_headers):
        guard.block_list.block("203.0.113.50", 3600)
        response = client.delete("/api/v1/security/blocks/203.0.113.50", headers=admin_headers)
        assert response.json() == {"client_key": "203.0.113.50", "unblocked": True}
        assert not guard.block_list.is_blocked("203.0.113.50")

    def test_csrf_token(self, client, app):
        response = client.get("/api/v1/security/csrf-token", headers={"X-Session-ID": "s-1"})
        assert response.status_code == 200
        token = response.json()["csrf_token"]
        assert response.json()["expires_in"] == 3600
        assert app.state.csrf_store.validate("s-1", token)
        assert not app.state.csrf_store.validate("s-2", token)

    def test_metrics_endpoint(self, client):
        client.get("/items")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "security_requests_validated_total" in response.text
