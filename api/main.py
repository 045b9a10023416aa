"""
WaveSearch API process entrypoint.

Run with `python api/main.py` (or the `wavesearch-api` script); configuration
comes from the environment and an optional `.env` in the working directory.
`uvicorn --factory main:create_app` also works for local development.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import db
from core.config import ConfigError, Settings, load_settings
from core.log import configure_logging
from core.middleware import AllowAnyOriginMiddleware, JSONBodyMiddleware

logger = logging.getLogger(__name__)

# Same exit status uvicorn.run uses when the lifespan startup fails.
STARTUP_FAILURE = 3


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pool = await db.create_pool(settings)
        if pool is not None and settings.db_check_on_startup:
            try:
                await db.check_connection(pool)
            except Exception:
                logger.exception("db_check_failed")
                await db.close_pool(pool)
                raise
        app.state.pool = pool
        try:
            yield
        finally:
            app.state.pool = None
            await db.close_pool(pool)

    app = FastAPI(title="WaveSearch API", lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = None

    # add_middleware wraps the existing stack, so the CORS stages (added last)
    # run first and their headers also land on responses the JSON stage rejects.
    app.add_middleware(JSONBodyMiddleware, max_body_size=settings.json_body_limit)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.allows_any_origin else list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.allows_any_origin:
        app.add_middleware(AllowAnyOriginMiddleware)

    @app.exception_handler(db.DatabaseNotConfigured)
    async def database_not_configured_handler(request: Request, exc: db.DatabaseNotConfigured):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return app


class ListeningServer(uvicorn.Server):
    """
    uvicorn server that logs the bound address once it accepts connections.

    A bind failure makes uvicorn log the error and exit with status 1.
    """

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if not self.started:
            return None
        host, port = self.servers[0].sockets[0].getsockname()[:2]
        logger.info("server_listening host=%s port=%s", host, port)


def serve(settings: Settings | None = None) -> None:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        lifespan="on",
        log_config=None,
    )
    server = ListeningServer(config)
    server.run()
    if not server.started:
        sys.exit(STARTUP_FAILURE)


def run() -> None:
    load_dotenv(find_dotenv(usecwd=True), override=False)
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
    except ConfigError as exc:
        sys.exit(f"config_error {exc}")
    serve(settings)


if __name__ == "__main__":
    run()
