"""
Security Dashboard API Router
Operator endpoints for the request guard: dashboard snapshot, on-demand
anomaly analysis, recent events, block management and CSRF token issue.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Query, Request

from config import Settings
from models.security import (
    AnomalyResult,
    CSRFTokenResponse,
    DashboardView,
    SecurityEventView,
    UnblockResponse,
)
from security.anomaly_analyzer import AnomalyAnalyzer
from security.csrf import CSRFTokenStore
from security.dashboard import SecurityDashboard, event_view
from security.events import SecurityEventType, SecuritySeverity
from security.request_guard import RequestGuard
from utils.exceptions import UnauthorizedAccessError
from utils.security import timing_safe_equal


router = APIRouter(prefix="/api/v1/security", tags=["Security Dashboard"])


def get_guard(request: Request) -> RequestGuard:
    return request.app.state.guard


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None),
) -> None:
    """Operator authentication via X-Admin-Token."""
    app_settings = get_settings(request)
    expected = app_settings.security_admin_token

    if expected is None and not app_settings.is_production():
        return
    if expected is not None and timing_safe_equal(x_admin_token, expected):
        return

    get_guard(request).record_event(
        SecurityEventType.UNAUTHORIZED_ACCESS,
        getattr(request.state, "client_key", None) or (request.client.host if request.client else "unknown"),
        SecuritySeverity.HIGH,
        user_agent=request.headers.get("user-agent"),
        path=request.url.path,
    )
    raise UnauthorizedAccessError("Invalid or missing admin token")


@router.get("/dashboard", response_model=DashboardView, dependencies=[Depends(require_admin)])
async def get_dashboard(request: Request):
    """Current blocked count, recent events, per-kind counts and threat level."""
    dashboard: SecurityDashboard = request.app.state.dashboard
    return dashboard.snapshot()


@router.post("/analyze", response_model=AnomalyResult, dependencies=[Depends(require_admin)])
async def analyze_events(request: Request, guard: RequestGuard = Depends(get_guard)):
    """Run anomaly analysis over the retained event log."""
    analyzer: AnomalyAnalyzer = request.app.state.analyzer
    result = await analyzer.analyze(guard.event_log.snapshot())
    guard.metrics.record_anomaly_analysis(result.source.value, result.threat_level.value)
    return result


@router.get("/events", response_model=List[SecurityEventView], dependencies=[Depends(require_admin)])
async def list_events(
    limit: int = Query(default=50, ge=1, le=1000),
    guard: RequestGuard = Depends(get_guard),
):
    return [event_view(event) for event in guard.recent_events(limit)]


@router.delete("/blocks/{client_key}", response_model=UnblockResponse, dependencies=[Depends(require_admin)])
async def unblock_client(client_key: str, guard: RequestGuard = Depends(get_guard)):
    return UnblockResponse(client_key=client_key, unblocked=guard.unblock(client_key))


@router.get("/csrf-token", response_model=CSRFTokenResponse)
async def issue_csrf_token(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
):
    """Issue a CSRF token bound to the caller's session (or client IP)."""
    store: CSRFTokenStore = request.app.state.csrf_store
    session_id = x_session_id or getattr(request.state, "client_key", None) or "anonymous"
    return CSRFTokenResponse(csrf_token=store.issue(session_id), expires_in=int(store.ttl_seconds))
