"""
Middleware package for FastAPI application.
"""
from .security_middleware import RequestSecurityMiddleware, get_client_ip

__all__ = ["RequestSecurityMiddleware", "get_client_ip"]
