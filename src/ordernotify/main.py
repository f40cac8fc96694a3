"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance and is the composition root for the real-time layer: it builds
the one Broker for this process and hangs it on app.state.broker. The
SSE and WebSocket transports, the health check, and the notification
service all get it from there. No module-level broker singleton.

Lifespan closes the broker on shutdown so every open stream unwinds.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ordernotify import __version__
from ordernotify.api import api_router
from ordernotify.config import Settings, settings as default_settings
from ordernotify.logging_config import configure_logging
from ordernotify.realtime.broker import Broker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Closing the broker closes every delivery channel, which
    ends SSE loops and WebSocket outbound pumps.
    """
    app_settings: Settings = app.state.settings
    logger.info(
        "ordernotify.starting",
        version=__version__,
        environment=app_settings.environment,
        port=app_settings.port,
    )

    yield

    logger.info("ordernotify.shutdown")
    app.state.broker.close()


def create_app(
    app_settings: Optional[Settings] = None,
    broker: Optional[Broker] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    app_settings = app_settings or default_settings
    configure_logging(app_settings.log_level, app_settings.log_json)

    app = FastAPI(
        title="Order Notifications",
        description="Real-time order notification fan-out over SSE and WebSocket",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.broker = broker or Broker()

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → handler

    from ordernotify.middleware.request_id import RequestIdMiddleware
    from ordernotify.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    app.include_router(api_router)

    # Mount real-time transports (both share app.state.broker)
    from ordernotify.realtime.sse import router as sse_router
    from ordernotify.realtime.websocket import router as ws_router
    app.include_router(sse_router)
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: ordernotify.main:app)
app = create_app()
