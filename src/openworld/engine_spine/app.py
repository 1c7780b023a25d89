"""FastAPI application bridging the desktop front-end to the AI engine.

Binds to 127.0.0.1 only (never 0.0.0.0).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from openworld import __version__
from openworld.config import Settings
from openworld.engine_spine.routes import router
from openworld.engine_spine.status import EngineServices

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 47300


def create_bridge_app(
    settings: Settings | None = None,
    services: EngineServices | None = None,
) -> FastAPI:
    """Create the bridge FastAPI application.

    Args:
        settings: Loaded settings (default: Settings.load())
        services: Prebuilt services, mainly for tests

    Returns:
        Configured FastAPI application
    """
    if services is None:
        services = EngineServices.build(settings or Settings.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services
        logger.info(f"Bridge started (engine={services.settings.engine_host})")

        yield

        # The engine must not outlive the app that spawned it
        services.shutdown()
        logger.info("Bridge stopped")

    app = FastAPI(
        title="OpenWorld Engine Bridge",
        description="Local AI engine lifecycle and chat streaming",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # Tauri WebView and browser dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:1420",
            "http://127.0.0.1:1420",
            "tauri://localhost",
            "https://tauri.localhost",
        ],
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "Origin",
            "Last-Event-ID",
            "Cache-Control",
        ],
        max_age=3600,
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "OpenWorld Engine Bridge",
            "version": __version__,
            "api": "/v1",
            "docs": "/docs",
        }

    return app


def run_bridge(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    settings: Settings | None = None,
    log_level: str = "info",
) -> None:
    """Run the bridge server.

    Args:
        host: Bind host (must be 127.0.0.1)
        port: Bind port (default: 47300)
        settings: Loaded settings
        log_level: uvicorn log level
    """
    import uvicorn

    if host != DEFAULT_HOST:
        logger.error(f"Refusing to bind to {host}")
        raise ValueError("Bridge must bind to 127.0.0.1 only")

    uvicorn.run(
        create_bridge_app(settings=settings),
        host=host,
        port=port,
        log_level=log_level,
    )
