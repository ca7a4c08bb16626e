"""FastAPI application factory for the Steeple server."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from steeple import __version__
from steeple.auth.session import HumanSessionProvider
from steeple.config import Config


def create_app(
    config: Config | None = None,
    *,
    session_provider: HumanSessionProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The engine is built in the lifespan handler. Tests that need a
    pre-built engine set ``app.state.engine`` on an app without lifespan.
    """
    resolved_config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        import logging

        from steeple.api.engine import create_engine

        logger = logging.getLogger("steeple.server")
        try:
            engine = await create_engine(resolved_config, session_provider=session_provider)
        except Exception as e:
            logger.error("Failed to initialize engine: %s", e)
            raise
        app.state.engine = engine
        yield
        await engine.shutdown()

    app = FastAPI(
        title="Steeple",
        description="MCP directory interface and OAuth 2.1 authorization server",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.config = resolved_config
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    from steeple.api.oauth_routes import router as oauth_router
    from steeple.api.routes import router

    app.include_router(router)
    app.include_router(oauth_router)
