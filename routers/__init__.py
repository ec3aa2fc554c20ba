"""
API endpoints and request handling.
Can import from: security, models
"""

from . import security_dashboard

__all__ = [
    "security_dashboard",
]
