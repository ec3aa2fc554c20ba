"""
Configuration management for the request guard.
Centralized configuration with environment variables.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field


class SecurityError(Exception):
    """Security configuration error."""
    pass


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Environment
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    # Application configuration
    app_name: str = Field(default="Request Guard", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    debug: bool = Field(default=False, validation_alias="DEBUG")
    port: int = Field(default=8000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, validation_alias="JSON_LOGS")

    # Field encryption; JWT_SECRET is accepted for deployments that only carry one secret
    encryption_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ENCRYPTION_SECRET", "JWT_SECRET"),
    )

    # Rate limiting
    rate_limit_max_requests: int = Field(default=100, validation_alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: float = Field(default=60.0, validation_alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_block_seconds: float = Field(default=300.0, validation_alias="RATE_LIMIT_BLOCK_SECONDS")

    # Escalation after repeated SQL injection attempts
    escalation_threshold: int = Field(default=3, validation_alias="ESCALATION_THRESHOLD")
    escalation_block_seconds: float = Field(default=3600.0, validation_alias="ESCALATION_BLOCK_SECONDS")
    escalation_window_seconds: float = Field(default=3600.0, validation_alias="ESCALATION_WINDOW_SECONDS")

    # Scanner user agents, probe paths and query string injection
    suspicious_activity_threshold: int = Field(default=5, validation_alias="SUSPICIOUS_ACTIVITY_THRESHOLD")
    suspicious_activity_window_seconds: float = Field(
        default=3600.0, validation_alias="SUSPICIOUS_ACTIVITY_WINDOW_SECONDS"
    )
    suspicious_activity_block_seconds: float = Field(
        default=3600.0, validation_alias="SUSPICIOUS_ACTIVITY_BLOCK_SECONDS"
    )

    # Security event log
    security_event_capacity: int = Field(default=1000, validation_alias="SECURITY_EVENT_CAPACITY")
    security_event_retain: int = Field(default=500, validation_alias="SECURITY_EVENT_RETAIN")
    payload_sample_length: int = Field(default=500, validation_alias="PAYLOAD_SAMPLE_LENGTH")
    dashboard_recent_events: int = Field(default=20, validation_alias="DASHBOARD_RECENT_EVENTS")

    # Anomaly analysis
    anomaly_window: int = Field(default=50, validation_alias="ANOMALY_WINDOW")
    anomaly_classifier_url: Optional[str] = Field(default=None, validation_alias="ANOMALY_CLASSIFIER_URL")
    anomaly_classifier_api_key: Optional[str] = Field(default=None, validation_alias="ANOMALY_CLASSIFIER_API_KEY")
    anomaly_classifier_model: str = Field(default="gpt-4o-mini", validation_alias="ANOMALY_CLASSIFIER_MODEL")
    anomaly_classifier_timeout: float = Field(default=10.0, validation_alias="ANOMALY_CLASSIFIER_TIMEOUT")

    # Background maintenance (0 disables periodic analysis)
    sweep_interval_seconds: float = Field(default=60.0, validation_alias="SWEEP_INTERVAL_SECONDS")
    analysis_interval_seconds: float = Field(default=0.0, validation_alias="ANALYSIS_INTERVAL_SECONDS")

    # CSRF Protection
    csrf_token_ttl_seconds: float = Field(default=3600.0, validation_alias="CSRF_TOKEN_TTL_SECONDS")

    # Security Headers
    security_headers_enabled: bool = Field(default=True, validation_alias="SECURITY_HEADERS_ENABLED")
    hsts_max_age: int = Field(default=31536000, validation_alias="HSTS_MAX_AGE")
    content_security_policy: str = Field(
        default="default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'",
        validation_alias="CONTENT_SECURITY_POLICY"
    )

    # Middleware behaviour
    screen_scanner_user_agents: bool = Field(default=True, validation_alias="SCREEN_SCANNER_USER_AGENTS")
    screen_suspicious_paths: bool = Field(default=True, validation_alias="SCREEN_SUSPICIOUS_PATHS")
    screen_query_strings: bool = Field(default=True, validation_alias="SCREEN_QUERY_STRINGS")
    max_body_bytes: int = Field(default=1048576, validation_alias="MAX_BODY_BYTES")
    exempt_paths: list = Field(
        default=["/health", "/metrics", "/docs", "/openapi.json"],
        validation_alias="SECURITY_EXEMPT_PATHS"
    )

    # Operator endpoints
    security_admin_token: Optional[str] = Field(default=None, validation_alias="SECURITY_ADMIN_TOKEN")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"  # Ignore extra environment variables
    )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    def validate_production_security(self) -> None:
        """Validate production security configuration."""
        if not self.is_production():
            return

        security_errors = []

        if not self.encryption_secret or len(self.encryption_secret) < 32:
            security_errors.append("ENCRYPTION_SECRET (or JWT_SECRET) must be at least 32 characters")

        if not self.security_admin_token:
            security_errors.append("SECURITY_ADMIN_TOKEN must be set in production")

        if self.debug:
            security_errors.append("DEBUG must be False in production")

        if self.security_event_retain > self.security_event_capacity:
            security_errors.append("SECURITY_EVENT_RETAIN must not exceed SECURITY_EVENT_CAPACITY")

        if security_errors:
            error_msg = "Production security validation failed:\n" + "\n".join(f"- {error}" for error in security_errors)
            raise SecurityError(error_msg)

    def get_security_headers(self) -> dict:
        """Get security headers applied to every response."""
        headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "X-XSS-Protection": "1; mode=block",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=(), usb=()",
            "X-Permitted-Cross-Domain-Policies": "none",
            "Cross-Origin-Opener-Policy": "same-origin",
            "Cross-Origin-Resource-Policy": "same-site",
            "Content-Security-Policy": self.content_security_policy,
        }

        if self.is_production():
            headers["Strict-Transport-Security"] = f"max-age={self.hsts_max_age}; includeSubDomains; preload"

        return {k: v for k, v in headers.items() if v is not None}


# Global settings instance
settings = Settings()
