"""
Security model schemas for anomaly reports, dashboard views and operator endpoints.
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, List
from datetime import datetime, timezone
from enum import Enum


class ThreatLevel(str, Enum):
    """Threat level enum."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnalysisSource(str, Enum):
    """Which path produced an anomaly result."""
    CLASSIFIER = "classifier"
    FALLBACK = "fallback"
    EMPTY = "empty"


class ClassifierVerdict(BaseModel):
    """Shape an external classifier must return."""
    threat_level: ThreatLevel
    analysis: str = Field(..., max_length=4000)
    recommendations: List[str] = Field(default_factory=list)
    should_alert: bool


class AnomalyResult(BaseModel):
    """Threat assessment over a window of security events."""
    threat_level: ThreatLevel
    analysis: str
    recommendations: List[str] = Field(default_factory=list)
    should_alert: bool = False
    source: AnalysisSource
    events_analyzed: int = 0
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SecurityEventView(BaseModel):
    """Security event as exposed over the API."""
    event_id: str
    kind: str
    client_key: str
    severity: str
    user_agent: Optional[str] = None
    path: Optional[str] = None
    payload_sample: Optional[str] = None
    was_blocked: bool = False
    occurred_at: datetime


class DashboardView(BaseModel):
    """Read-only operational snapshot."""
    blocked_count: int
    recent_events: List[SecurityEventView]
    events_by_type: Dict[str, int]
    threat_level: ThreatLevel
    tracked_clients: int = 0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CSRFTokenResponse(BaseModel):
    csrf_token: str
    expires_in: int


class UnblockResponse(BaseModel):
    client_key: str
    unblocked: bool
