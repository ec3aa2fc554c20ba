"""
Prometheus metrics for the request guard.
"""

from .metrics import SecurityMetrics

__all__ = ['SecurityMetrics']
