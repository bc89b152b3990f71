"""
FastAPI server for the authentication core.

``create_app`` builds an application around one AuthSettings object. Without a
signing secret the app still starts but answers every request with
``server_misconfigured``; the CLI ``serve`` command refuses to start instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from authcore import __version__
from authcore.auth import AuthServices, Mailer, build_services
from authcore.config import AuthSettings
from authcore.db import UserDirectory, create_directory
from authcore.web.routes import auth_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AuthSettings] = None,
    directory: Optional[UserDirectory] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    """Application factory."""
    settings = settings or AuthSettings.from_env()

    services: Optional[AuthServices] = None
    if settings.is_configured:
        directory = directory or create_directory(settings)
        services = build_services(settings, directory, mailer)
    else:
        logger.error("JWT_SECRET is not configured; every request will fail with server_misconfigured")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup
        if services is not None:
            await services.directory.init()
            logger.info(f"Auth core ready (directory backend: {settings.directory_backend})")
        yield

    app = FastAPI(
        title="Auth Core",
        description="Session tokens, password verification and recovery",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    app.include_router(auth_router)
    return app


def run_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    """Run the web server."""
    import uvicorn

    uvicorn.run(
        "authcore.web.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
