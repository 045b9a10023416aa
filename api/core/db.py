"""
PostgreSQL connection pool wiring using asyncpg.

The pool is created by the application lifespan (see `api/main.py`) and kept
on `app.state.pool`. Creation is lazy when `pool_min_size` is 0: asyncpg only
opens a connection the first time one is acquired, so an unreachable database
does not block startup.

Handlers that need the database take a connection through `get_connection`,
which scopes it to the request and always releases it back to the pool.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator
from urllib.parse import urlsplit

import asyncpg
from fastapi import Request

from .config import Settings

logger = logging.getLogger(__name__)


class DatabaseNotConfigured(RuntimeError):
    pass


def _redacted(dsn: str) -> str:
    parts = urlsplit(dsn)
    host = parts.hostname or "-"
    port = parts.port or 5432
    return f"{host}:{port}{parts.path or ''}"


async def create_pool(settings: Settings) -> asyncpg.Pool | None:
    if not settings.database_url:
        logger.warning("db_pool_skipped reason=no_database_url")
        return None

    pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
    )
    logger.debug(
        "db_pool_created target=%s min_size=%s max_size=%s",
        _redacted(settings.database_url),
        settings.pool_min_size,
        settings.pool_max_size,
    )
    return pool


async def check_connection(pool: asyncpg.Pool) -> None:
    """
    Acquire one connection and run a trivial query. Raises on any failure.
    """
    async with pool.acquire() as conn:
        await conn.fetchval("SELECT 1")


async def close_pool(pool: asyncpg.Pool | None) -> None:
    if pool is None:
        return None
    await pool.close()


def get_pool(request: Request) -> asyncpg.Pool:
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        raise DatabaseNotConfigured("Database is not configured. Set POSTGRES_URL.")
    return pool


async def get_connection(request: Request) -> AsyncIterator[asyncpg.Connection]:
    """
    FastAPI dependency: one pooled connection per request.
    """
    pool = get_pool(request)
    async with pool.acquire() as conn:
        yield conn
