"""
HTTP integration for the request guard.

Security Features:
- Client IP extraction with proxy header support
- Block list, rate limit and malicious payload checks via RequestGuard
- Scanner user agent, probe path and query string screening
- Request body size cap
- Generic error responses that never echo the offending payload
- Security headers on every response
"""
import json
import time
import secrets
import logging
import ipaddress
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from config import Settings, settings as default_settings
from security.request_guard import RequestGuard
from utils.exceptions import GuardError, PayloadTooLargeError

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")

FORWARDED_HEADERS = [
    "CF-Connecting-IP",  # Cloudflare
    "X-Forwarded-For",   # Standard
    "X-Real-IP",         # Nginx
    "X-Client-IP"        # Apache
]


def get_client_ip(request: Request) -> str:
    """Get client IP with proxy header support."""
    for header in FORWARDED_HEADERS:
        if header in request.headers:
            ip = request.headers[header].split(",")[0].strip()
            try:
                ipaddress.ip_address(ip)
                return ip
            except ValueError:
                continue

    # Fallback to direct connection
    return request.client.host if request.client else "unknown"


def create_security_response(
    error: GuardError,
    request_id: str,
    app_settings: Settings,
    error_type: Optional[str] = None,
) -> JSONResponse:
    """Standardized rejection body; the client only ever sees the generic user message."""
    response_data = {
        "error": {
            "type": error_type or error.category.value,
            "message": error.user_message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
        }
    }

    if not app_settings.is_production():
        response_data["error"]["error_code"] = error.error_code

    response = JSONResponse(content=response_data, status_code=error.http_status)
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
    if app_settings.security_headers_enabled:
        response.headers.update(app_settings.get_security_headers())
    return response


class RequestSecurityMiddleware(BaseHTTPMiddleware):
    """Runs every request through RequestGuard before it reaches a route."""

    def __init__(self, app: ASGIApp, guard: RequestGuard, app_settings: Optional[Settings] = None):
        super().__init__(app)
        self.guard = guard
        self.settings = app_settings or default_settings
        logger.info("🛡️ [SECURITY] Request security middleware initialized")

    async def dispatch(self, request: Request, call_next):
        request_id = secrets.token_urlsafe(12)
        request.state.request_id = request_id
        path = request.url.path

        if path in self.settings.exempt_paths:
            response = await call_next(request)
            self._add_security_headers(response)
            return response

        start_time = time.time()
        client_ip = get_client_ip(request)
        user_agent = request.headers.get("user-agent")
        request.state.client_key = client_ip

        screened = self.guard.screen_request(client_ip, path, self._query_text(request), user_agent)
        if not screened.valid:
            return self._reject(screened, request, request_id, client_ip)

        body = None
        if request.method in BODY_METHODS:
            try:
                body = await self._read_body(request, self.settings.max_body_bytes)
            except PayloadTooLargeError as e:
                logger.info(f"🚫 [SECURITY] {request.method} {path} from {client_ip} rejected: {e.message}")
                return create_security_response(e, request_id, self.settings, "payload_too_large")

        result = self.guard.validate(client_ip, self._raw_path(request), body, user_agent)
        if not result.valid:
            return self._reject(result, request, request_id, client_ip)

        request.state.sanitized_body = result.sanitized

        response = await call_next(request)
        self._add_security_headers(response)

        if logger.isEnabledFor(logging.DEBUG):
            processing_time = (time.time() - start_time) * 1000
            logger.debug(
                f"📊 [SECURITY] Request: {client_ip} {request.method} {path} "
                f"-> {response.status_code} in {processing_time:.2f}ms"
            )
        return response

    def _reject(self, result, request: Request, request_id: str, client_ip: str) -> JSONResponse:
        try:
            result.raise_for_rejection()
        except GuardError as e:
            logger.info(
                f"🚫 [SECURITY] {request.method} {request.url.path} from {client_ip} rejected: {result.reason}"
            )
            return create_security_response(e, request_id, self.settings, result.rejection)

    @staticmethod
    def _query_text(request: Request) -> str:
        # Decoded name/value pairs, so percent-encoded injection is seen as typed
        query = request.url.query
        if not query:
            return ""
        return json.dumps(parse_qsl(query, keep_blank_values=True))

    @staticmethod
    def _raw_path(request: Request) -> str:
        # Undecoded path, so percent-encoded traversal reaches the detector intact
        raw = request.scope.get("raw_path")
        if raw:
            return raw.decode("latin-1")
        return request.url.path

    @staticmethod
    async def _read_body(request: Request, max_bytes: int) -> Any:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise PayloadTooLargeError(max_bytes)

        raw = await request.body()
        if len(raw) > max_bytes:
            raise PayloadTooLargeError(max_bytes)
        if not raw:
            return None

        text = raw.decode("utf-8", errors="replace")
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(text, keep_blank_values=True))
        return text

    def _add_security_headers(self, response) -> None:
        if not self.settings.security_headers_enabled:
            return
        for header_name, header_value in self.settings.get_security_headers().items():
            response.headers[header_name] = header_value
