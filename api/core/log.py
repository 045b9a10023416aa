"""
Root logging setup for the API process.
"""

from __future__ import annotations

import logging

from .config import ConfigError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got {level!r}.")

    # basicConfig is a no-op once the root logger has handlers.
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
