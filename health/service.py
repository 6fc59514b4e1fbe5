"""
Health check service for applications hosting the session store.

This module provides the HealthCheckService class that reports whether the
session store backend is reachable. A session store that cannot be reached
makes the application unhealthy: requests cannot load or save sessions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

SESSION_STORE = "session_store"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DependencyHealth:
    """
    Health status of a single dependency.

    Attributes:
        name: The name of the dependency (e.g., "session_store")
        healthy: Whether the dependency is healthy and responding
        response_time_ms: The time taken to check the dependency in milliseconds
        error: Optional error message if the dependency check failed
    """
    name: str
    healthy: bool
    response_time_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class HealthStatus:
    """
    Overall health status of the service.

    Attributes:
        status: Overall status - "healthy" or "unhealthy"
        timestamp: ISO 8601 UTC time the check was performed
        dependencies: List of individual dependency health statuses
    """
    status: str
    timestamp: str
    dependencies: list[DependencyHealth] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


class HealthCheckService:
    """
    Service for checking the health of the session store.

    Attributes:
        session_store: The session store instance to check, None before startup
        check_timeout: Timeout in seconds for dependency checks (default: 5.0)
    """

    def __init__(
        self,
        session_store: Optional[Any] = None,
        check_timeout: float = 5.0
    ):
        self.session_store = session_store
        self.check_timeout = check_timeout

    async def check_readiness(self) -> HealthStatus:
        """
        Check the session store for readiness.

        Returns:
            HealthStatus: "healthy" when the store answers within the
            timeout, "unhealthy" otherwise.
        """
        dependency = await self._check_session_store()
        status = "healthy" if dependency.healthy else "unhealthy"

        return HealthStatus(
            status=status,
            timestamp=_utc_timestamp(),
            dependencies=[dependency]
        )

    async def check_liveness(self) -> dict[str, Any]:
        """
        Simple liveness check - process is running.

        It does not check external dependencies.
        """
        return {
            "status": "alive",
            "timestamp": _utc_timestamp()
        }

    async def check_health(self) -> dict[str, Any]:
        """Basic health check - service is accepting requests."""
        return {
            "status": "ok",
            "timestamp": _utc_timestamp()
        }

    async def _check_session_store(self) -> DependencyHealth:
        start_time = time.perf_counter()

        if self.session_store is None:
            return DependencyHealth(
                name=SESSION_STORE,
                healthy=False,
                response_time_ms=0.0,
                error="Session store is not initialized"
            )

        try:
            result = await asyncio.wait_for(
                self.session_store.health_check(),
                timeout=self.check_timeout
            )

            elapsed_ms = (time.perf_counter() - start_time) * 1000

            if result:
                logger.debug(f"Session store health check passed in {elapsed_ms:.2f}ms")
                return DependencyHealth(
                    name=SESSION_STORE,
                    healthy=True,
                    response_time_ms=elapsed_ms
                )

            logger.warning(f"Session store health check returned False after {elapsed_ms:.2f}ms")
            return DependencyHealth(
                name=SESSION_STORE,
                healthy=False,
                response_time_ms=elapsed_ms,
                error="Session store health check returned False"
            )

        except asyncio.TimeoutError:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            error_msg = f"Session store health check timed out after {self.check_timeout} seconds"
            logger.warning(error_msg)
            return DependencyHealth(
                name=SESSION_STORE,
                healthy=False,
                response_time_ms=elapsed_ms,
                error=error_msg
            )

        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            error_msg = f"Session store health check failed: {str(e)}"
            logger.error(error_msg)
            return DependencyHealth(
                name=SESSION_STORE,
                healthy=False,
                response_time_ms=elapsed_ms,
                error=error_msg
            )
