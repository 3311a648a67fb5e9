from __future__ import annotations

import logging

from uvicorn.config import LOGGING_CONFIG

from gulp.logging_utils import LOGGER_NAME, build_log_config, configure_logging


def test_build_log_config_adds_engine_logger() -> None:
    config = build_log_config()
    assert config["loggers"][LOGGER_NAME] == {
        "handlers": ["default"],
        "level": "INFO",
        "propagate": False,
    }
    assert "default" in config["handlers"]
    assert LOGGER_NAME not in LOGGING_CONFIG["loggers"]


def test_debug_raises_verbosity() -> None:
    config = build_log_config(debug=True)
    assert config["loggers"][LOGGER_NAME]["level"] == "DEBUG"
    assert config["loggers"]["uvicorn"]["level"] == "DEBUG"
    assert LOGGING_CONFIG["loggers"]["uvicorn"]["level"] == "INFO"


def test_configure_logging_applies_levels() -> None:
    configure_logging(debug=True)
    assert logging.getLogger("gulp.playback").getEffectiveLevel() == logging.DEBUG
    configure_logging()
    assert logging.getLogger("gulp").level == logging.INFO
