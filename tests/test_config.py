"""
Tests for settings, production validation, logging setup and error payloads.
"""
import json
import logging

import pytest
from fastapi.testclient import TestClient

from config import SecurityError, Settings
from main import create_app
from utils.exceptions import RateLimitExceededError, ThreatDetectedError
from utils.logging_config import StructuredFormatter, setup_logging

STRONG_SECRET = "s" * 40


@pytest.mark.unit
class TestSettings:

    def test_defaults(self):
        cfg = Settings(environment="test")
        assert cfg.rate_limit_max_requests == 100
        assert cfg.rate_limit_window_seconds == 60
        assert cfg.rate_limit_block_seconds == 300
        assert cfg.escalation_threshold == 3
        assert cfg.escalation_block_seconds == 3600
        assert cfg.security_event_capacity == 1000
        assert cfg.security_event_retain == 500
        assert cfg.anomaly_window == 50

    def test_jwt_secret_is_accepted_as_encryption_secret(self, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_SECRET", raising=False)
        monkeypatch.setenv("JWT_SECRET", "from-jwt")
        assert Settings().encryption_secret == "from-jwt"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "7")
        assert Settings().rate_limit_max_requests == 7

    def test_production_validation_collects_errors(self):
        cfg = Settings(environment="production", encryption_secret="short", debug=True)
        with pytest.raises(SecurityError) as exc_info:
            cfg.validate_production_security()
        message = str(exc_info.value)
        assert "ENCRYPTION_SECRET" in message
        assert "SECURITY_ADMIN_TOKEN" in message
        assert "DEBUG" in message

    def test_production_validation_passes(self):
        cfg = Settings(environment="production", encryption_secret=STRONG_SECRET, security_admin_token="t")
        cfg.validate_production_security()

    def test_non_production_skips_validation(self):
        Settings(environment="development", encryption_secret=None).validate_production_security()

    def test_hsts_only_in_production(self):
        assert "Strict-Transport-Security" not in Settings(environment="test").get_security_headers()
        prod = Settings(environment="production").get_security_headers()
        assert prod["Strict-Transport-Security"].startswith("max-age=")

    def test_misconfigured_production_app_refuses_to_start(self):
        cfg = Settings(environment="production", encryption_secret=None)
        app = create_app(cfg, configure_logging=False)
        with pytest.raises(SecurityError):
            with TestClient(app):
                pass

    def test_production_admin_endpoints_require_token(self):
        cfg = Settings(environment="production", encryption_secret=STRONG_SECRET, security_admin_token="t")
        with TestClient(create_app(cfg, configure_logging=False)) as client:
            response = client.get("/api/v1/security/dashboard")
            assert response.status_code == 401
            assert "error_code" not in response.json()["error"]
            assert client.get("/api/v1/security/dashboard", headers={"X-Admin-Token": "t"}).status_code == 200

    def test_development_without_admin_token_is_open(self):
        cfg = Settings(environment="development", security_admin_token=None)
        with TestClient(create_app(cfg, configure_logging=False)) as client:
            assert client.get("/api/v1/security/dashboard").status_code == 200


@pytest.mark.unit
class TestLogging:

    def test_structured_formatter(self):
        record = logging.LogRecord("guard", logging.WARNING, __file__, 10, "blocked %s", ("1.2.3.4",), None)
        record.client_key = "1.2.3.4"
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["message"] == "blocked 1.2.3.4"
        assert entry["level"] == "WARNING"
        assert entry["client_key"] == "1.2.3.4"

    def test_setup_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configured = setup_logging("debug", json_logs=True)
            assert configured.level == logging.DEBUG
            assert isinstance(configured.handlers[0].formatter, StructuredFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


@pytest.mark.unit
class TestErrors:

    def test_error_payload(self):
        error = RateLimitExceededError(retry_after=30)
        data = error.to_dict()
        assert data["http_status"] == 429
        assert data["category"] == "rate_limit"
        assert data["context"]["retry_after"] == 30
        assert data["error_code"].startswith("RATELIMITEXCEEDEDERROR_")

    def test_threat_user_message_is_generic(self):
        error = ThreatDetectedError("sql_injection", message="SQL injection detected")
        assert error.user_message == "Invalid request."
        assert error.kind == "sql_injection"
