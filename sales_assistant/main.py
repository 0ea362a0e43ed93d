from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .routers import chat
from .services.engine import get_engine
from .services.error_handling import error_response
from .services.errors import EngineError
from .services.session_store import SessionSweeper
from .utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the TTL sweep for the lifetime of the app."""
    settings = app.state.settings
    sweeper = SessionSweeper(get_engine().sweep, settings.session_sweep_interval_seconds)
    sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        sweeper.stop()


async def handled_error(request: Request, exc: Exception):
    return error_response(request, exc, handled=True)


async def unhandled_error(request: Request, exc: Exception):
    return error_response(request, exc, handled=False)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Paint Sales Assistant",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    for exc_type in (RequestValidationError, HTTPException, EngineError):
        app.add_exception_handler(exc_type, handled_error)
    app.add_exception_handler(Exception, unhandled_error)

    app.include_router(chat.router)
    logger.info("FastAPI app initialized (env=%s)", settings.env)
    return app


app = create_app()
