"""
Health check module for applications hosting the session store.

This module provides health check services reporting whether the session
store backend is reachable, with response time metrics.
"""

from health.service import (
    HealthCheckService,
    HealthStatus,
    DependencyHealth,
)

__all__ = [
    "HealthCheckService",
    "HealthStatus",
    "DependencyHealth",
]
