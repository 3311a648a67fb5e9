from __future__ import annotations

import logging.config
from copy import deepcopy
from typing import Any

from uvicorn.config import LOGGING_CONFIG

__all__ = ["build_log_config", "configure_logging"]

LOGGER_NAME = "gulp"


def build_log_config(debug: bool = False) -> dict[str, Any]:
    """Return uvicorn's logging config extended with the ``gulp`` logger.

    The engine's loggers share uvicorn's default formatter so server and
    playback lines look the same on the console.
    """
    config = deepcopy(LOGGING_CONFIG)
    config.setdefault("handlers", {})
    config.setdefault("loggers", {})
    config["loggers"][LOGGER_NAME] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    if debug:
        uvicorn_logger = config["loggers"].get("uvicorn")
        if isinstance(uvicorn_logger, dict):
            uvicorn_logger["level"] = "DEBUG"
    return config


def configure_logging(debug: bool = False) -> dict[str, Any]:
    config = build_log_config(debug)
    logging.config.dictConfig(config)
    return config
