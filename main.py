"""
Request guard service.
Wires the guard, anomaly analyzer, dashboard and CSRF store into a FastAPI app.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config import Settings, settings as default_settings
from middleware.security_middleware import RequestSecurityMiddleware, create_security_response
from routers.security_dashboard import router as security_router
from security.anomaly_analyzer import AnomalyAnalyzer, HTTPAnomalyClassifier
from security.csrf import CSRFTokenStore
from security.dashboard import SecurityDashboard
from security.request_guard import RequestGuard
from utils.exceptions import GuardError
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_analyzer(app_settings: Settings) -> AnomalyAnalyzer:
    """Network classifier when one is configured, rule-based otherwise."""
    classifier = None
    if app_settings.anomaly_classifier_url:
        classifier = HTTPAnomalyClassifier(
            base_url=app_settings.anomaly_classifier_url,
            api_key=app_settings.anomaly_classifier_api_key,
            model=app_settings.anomaly_classifier_model,
            timeout=app_settings.anomaly_classifier_timeout,
        )
        logger.info(f"🔗 [STARTUP] Anomaly classifier at {app_settings.anomaly_classifier_url}")
    return AnomalyAnalyzer(
        classifier=classifier,
        window=app_settings.anomaly_window,
        timeout=app_settings.anomaly_classifier_timeout,
    )


def create_app(
    app_settings: Optional[Settings] = None,
    guard: Optional[RequestGuard] = None,
    analyzer: Optional[AnomalyAnalyzer] = None,
    configure_logging: bool = True,
) -> FastAPI:
    cfg = app_settings or default_settings
    guard = guard or RequestGuard(cfg)
    analyzer = analyzer or build_analyzer(cfg)
    guard.analyzer = analyzer

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        if configure_logging:
            setup_logging(cfg.log_level, json_logs=cfg.json_logs or cfg.is_production())

        logger.info("🚀 [STARTUP] Beginning application startup...")
        cfg.validate_production_security()
        await guard.start_background_tasks()
        logger.info("✅ [STARTUP] Request guard ready")

        yield

        logger.info("👋 [SHUTDOWN] Beginning graceful shutdown...")
        await guard.stop_background_tasks()
        try:
            await analyzer.aclose()
        except Exception as e:
            logger.warning(f"⚠️ [SHUTDOWN] Analyzer cleanup error: {e}")

    app = FastAPI(
        title=cfg.app_name,
        version=cfg.app_version,
        debug=cfg.debug,
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.guard = guard
    app.state.analyzer = analyzer
    app.state.dashboard = SecurityDashboard(guard)
    app.state.csrf_store = CSRFTokenStore(ttl_seconds=cfg.csrf_token_ttl_seconds)

    app.add_middleware(RequestSecurityMiddleware, guard=guard, app_settings=cfg)
    app.include_router(security_router)

    @app.exception_handler(GuardError)
    async def guard_error_handler(request: Request, exc: GuardError):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.info(f"[{request_id}] {exc.__class__.__name__}: {exc.message}")
        return create_security_response(exc, request_id, cfg)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(f"[{request_id}] Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "request_id": request_id,
                "error": "internal_server_error"
            }
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": cfg.app_name, "version": cfg.app_version}

    @app.get("/metrics")
    async def metrics():
        return Response(content=guard.metrics.export(), media_type=guard.metrics.content_type)

    return app


app = create_app()


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )
