"""
FastAPI server exposing the address resolver to signaling components.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import uvicorn

from .. import __version__
from ..config import ConfigurationStore
from ..network.resolver import AddressResolver

logger = logging.getLogger(__name__)

DEFAULT_API_PORT = 11478


def create_app(resolver: Optional[AddressResolver] = None) -> FastAPI:
    """
    Create the FastAPI application.

    The resolver is started when the application starts and stopped when it
    shuts down. Without one, a resolver over the on-disk configuration is used.
    """
    from .routes import router

    if resolver is None:
        resolver = AddressResolver(ConfigurationStore.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        resolver.start()
        try:
            yield
        finally:
            resolver.stop()

    app = FastAPI(
        title="natresolve",
        description="Public and local address resolution for NAT-ed peers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.resolver = resolver

    app.include_router(router, prefix="/api")

    # Health check
    @app.get("/health")
    async def health():
        return {
            "status": "ok" if resolver.running else "starting",
            "stun_enabled": resolver.stun_enabled,
        }

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = DEFAULT_API_PORT,
    resolver: Optional[AddressResolver] = None,
):
    """Run the server with uvicorn."""
    app = create_app(resolver)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
