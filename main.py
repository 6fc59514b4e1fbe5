"""
FastAPI application wiring for the Couchbase session store.

The session store is created once in the lifespan handler, kept on
``app.state.session_store`` and handed to request handlers through the
``get_session_store`` dependency. Run with::

    uvicorn main:create_app --factory
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings, validate_startup
from errors.exceptions import session_store_unavailable
from errors.handlers import register_exception_handlers
from health.service import HealthCheckService
from session.couchbase_store import CouchbaseSessionStore, create_session_store
from telemetry.service import initialize_telemetry

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Settings], Awaitable[CouchbaseSessionStore]]


def get_session_store(request: Request) -> CouchbaseSessionStore:
    """
    FastAPI dependency returning the application's session store.

    Raises:
        BackendError: If the store has not been set up.
    """
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise session_store_unavailable("Session store is not initialized")
    return store


def create_app(
    settings: Optional[Settings] = None,
    store_factory: Optional[StoreFactory] = None,
    configure_logging: bool = True
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment if omitted.
        store_factory: Coroutine building the session store from settings;
            defaults to ``create_session_store``.
        configure_logging: Install the JSON log handler on startup.
    """
    settings = settings or get_settings()
    factory = store_factory or create_session_store
    health_check_service = HealthCheckService(check_timeout=settings.health_check_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            initialize_telemetry(settings)

        logger.info("Starting session store", extra={"extra_data": {
            "environment": settings.environment.value,
            "session_backend": settings.session_backend,
        }})
        validate_startup(settings)
        store = await factory(settings)
        app.state.session_store = store
        health_check_service.session_store = store

        yield

        logger.info("Shutting down session store")
        health_check_service.session_store = None
        app.state.session_store = None
        await store.close()

    app = FastAPI(title="Couchbase Session Store", version="0.94.0", lifespan=lifespan)
    app.state.session_store = None
    app.state.health_check_service = health_check_service

    register_exception_handlers(app)

    @app.get("/health")
    async def health_basic():
        """Basic health check: the service is accepting requests."""
        return await health_check_service.check_health()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness check: the session store answers.

        Returns 503 Service Unavailable when it does not.
        """
        health_status = await health_check_service.check_readiness()
        if health_status.status == "unhealthy":
            return JSONResponse(status_code=503, content=health_status.to_dict())
        return health_status.to_dict()

    @app.get("/health/live")
    async def health_live():
        """Liveness check: the process is running."""
        return await health_check_service.check_liveness()

    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(create_app(), host="0.0.0.0", port=port, log_level="info")
