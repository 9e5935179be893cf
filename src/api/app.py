"""FastAPI Application Factory.

Creates the notification routing API with request tracing, structured
error handling and CORS.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.dependencies import get_engine, shutdown_engine
from src.api.errors import register_exception_handlers
from src.api.models import HealthResponse
from src.api.routes import deliveries, escalations, notifications, reports, routing
from src.logging_config import configure_logging
from src.logging_config.middleware import RequestTracingMiddleware
from src.notification_routing.engine import NotificationRoutingEngine

logger = logging.getLogger(__name__)


# ── Lifespan (startup / shutdown) ────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging at startup; cancel pending timers at shutdown."""
    configure_logging()
    logger.info("Notification routing API starting up")
    yield
    shutdown_engine()
    logger.info("Notification routing API shutting down")


# ── App Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[APIConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Middleware stack (outermost → innermost):
        RequestTracing → CORS → App

    Args:
        config: API configuration. Uses defaults if not provided.

    Returns:
        Configured FastAPI application.
    """
    config = config or DEFAULT_API_CONFIG

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        lifespan=lifespan,
    )

    # add_middleware prepends, so order here is innermost-first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.resolved_cors_origins(),
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    app.add_middleware(RequestTracingMiddleware)

    register_exception_handlers(app, suppress_details=config.suppress_internal_details)

    # ── Health check ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    def health(engine: NotificationRoutingEngine = Depends(get_engine)):
        stats = engine.routing_stats()
        return HealthResponse(
            status="ok",
            version=config.version,
            routes=stats["active_routes"],
            active_escalations=stats["active_escalations"],
        )

    # ── Route modules ────────────────────────────────────────────

    app.include_router(notifications.router, prefix=config.prefix)
    app.include_router(routing.router, prefix=config.prefix)
    app.include_router(escalations.router, prefix=config.prefix)
    app.include_router(deliveries.router, prefix=config.prefix)
    app.include_router(reports.router, prefix=config.prefix)

    logger.info("Notification routing API v%s initialized", config.version)
    return app
