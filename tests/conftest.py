"""
Pytest configuration and fixtures for request guard testing.
Every fixture builds fresh state; nothing is shared between tests.
"""
import os
import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from typing import List

# Set testing environment variables before importing application modules
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["ENCRYPTION_SECRET"] = "test-encryption-secret-key-for-testing-only"

from config import Settings
from main import create_app
from security.events import SecurityEvent, SecurityEventType, SecuritySeverity
from security.request_guard import RequestGuard

ADMIN_TOKEN = "test-admin-token"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    """Small limits so boundaries are cheap to reach."""
    return Settings(
        environment="test",
        encryption_secret="test-encryption-secret-key-for-testing-only",
        rate_limit_max_requests=5,
        rate_limit_window_seconds=60,
        rate_limit_block_seconds=300,
        escalation_threshold=3,
        escalation_block_seconds=3600,
        security_admin_token=ADMIN_TOKEN,
        sweep_interval_seconds=60,
        analysis_interval_seconds=0,
    )


@pytest.fixture
def guard(test_settings, clock):
    return RequestGuard(test_settings, clock=clock)


@pytest.fixture
def app(test_settings, guard):
    application = create_app(test_settings, guard=guard, configure_logging=False)

    @application.post("/echo")
    async def echo(request: Request):
        return {"sanitized": request.state.sanitized_body}

    @application.get("/items")
    async def items():
        return {"items": []}

    return application


@pytest.fixture
def client(app):
    """Test client for FastAPI app with lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


def make_events(severities: List[SecuritySeverity], kind=SecurityEventType.SUSPICIOUS_REQUEST) -> List[SecurityEvent]:
    return [
        SecurityEvent(kind=kind, client_key=f"10.0.0.{i % 250}", severity=severity, path="/api/orders")
        for i, severity in enumerate(severities)
    ]


@pytest.fixture
def event_factory():
    return make_events


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "security: mark test as security related")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "concurrency: mark test as exercising concurrent callers")
