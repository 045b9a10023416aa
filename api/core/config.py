"""
Process configuration read from the environment.

All defaults live here. `load_settings()` is called once at startup and the
resulting `Settings` is passed to whatever needs it (see `api/main.py`).

Environment:
- POSTGRES_URL (or DATABASE_URL): postgres connection string
- HOST / PORT: listening address, PORT defaults to 3001
- CORS_ORIGINS: comma separated allow-list, "*" for any origin
- DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE: pool bounds
- DB_CHECK_ON_STARTUP: "1"/"true" to run a probe query before serving
- JSON_BODY_LIMIT: max JSON request body in bytes
- LOG_LEVEL: root log level name
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3001
DEFAULT_POOL_MIN_SIZE = 0
DEFAULT_POOL_MAX_SIZE = 10
DEFAULT_JSON_BODY_LIMIT = 100 * 1024
DEFAULT_LOG_LEVEL = "INFO"

_POSTGRES_SCHEMES = {"postgres", "postgresql"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    database_url: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: tuple[str, ...] = ("*",)
    pool_min_size: int = DEFAULT_POOL_MIN_SIZE
    pool_max_size: int = DEFAULT_POOL_MAX_SIZE
    db_check_on_startup: bool = False
    json_body_limit: int = DEFAULT_JSON_BODY_LIMIT
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.cors_origins


def _get(environ: Mapping[str, str], name: str) -> str:
    return (environ.get(name) or "").strip()


def _env_int(environ: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = _get(environ, name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}.")
    return value


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(environ, name).lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean flag, got {raw!r}.")


def _sanitize_database_url(url: str) -> str:
    # asyncpg negotiates TLS itself; a libpq-style sslmode param is dropped.
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def validate_database_url(url: str) -> str:
    """
    Check the connection string's syntax and return the DSN handed to asyncpg.

    No connection is attempted here.
    """
    url = (url or "").strip()
    if not url:
        raise ConfigError("Database URL is empty.")

    parts = urlsplit(url)
    if parts.scheme not in _POSTGRES_SCHEMES:
        raise ConfigError(f"Database URL scheme must be postgres:// or postgresql://, got {parts.scheme!r}.")
    try:
        # Raises on a non-numeric or out of range port.
        parts.port
    except ValueError as exc:
        raise ConfigError(f"Database URL has an invalid port: {exc}.") from exc
    return _sanitize_database_url(url)


def _database_url(environ: Mapping[str, str]) -> str | None:
    for name in ("POSTGRES_URL", "DATABASE_URL"):
        raw = _get(environ, name)
        if raw:
            return validate_database_url(raw)
    return None


def _cors_origins(environ: Mapping[str, str]) -> tuple[str, ...]:
    raw = _get(environ, "CORS_ORIGINS")
    if not raw:
        return ("*",)
    origins = tuple(o.strip().rstrip("/") for o in raw.split(",") if o.strip())
    return origins or ("*",)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    environ = os.environ if environ is None else environ

    port = _env_int(environ, "PORT", DEFAULT_PORT)
    if port > 65535:
        raise ConfigError(f"PORT must be <= 65535, got {port}.")

    pool_min_size = _env_int(environ, "DB_POOL_MIN_SIZE", DEFAULT_POOL_MIN_SIZE)
    pool_max_size = _env_int(environ, "DB_POOL_MAX_SIZE", DEFAULT_POOL_MAX_SIZE, minimum=1)
    if pool_min_size > pool_max_size:
        raise ConfigError(
            f"DB_POOL_MIN_SIZE ({pool_min_size}) must not exceed DB_POOL_MAX_SIZE ({pool_max_size})."
        )

    return Settings(
        database_url=_database_url(environ),
        host=_get(environ, "HOST") or DEFAULT_HOST,
        port=port,
        cors_origins=_cors_origins(environ),
        pool_min_size=pool_min_size,
        pool_max_size=pool_max_size,
        db_check_on_startup=_env_bool(environ, "DB_CHECK_ON_STARTUP", False),
        json_body_limit=_env_int(environ, "JSON_BODY_LIMIT", DEFAULT_JSON_BODY_LIMIT, minimum=1),
        log_level=(_get(environ, "LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
    )
