"""Structured logging configuration using dictConfig.

Log records go to stderr so command output on stdout stays machine-readable.
Production uses python-json-logger; everything else gets a console format.
"""
import logging
import logging.config
import sys
from typing import Dict, Any, Optional

from .settings import Settings, get_settings

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "redis")

JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logging_config(service_name: Optional[str] = None,
                       settings: Optional[Settings] = None,
                       level: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the dictConfig mapping.

    Args:
        service_name: Tag added to every record (console prefix or JSON field)
        settings: Source of log_level and environment
        level: Overrides settings.log_level for the trendwire logger
    """
    settings = settings or get_settings()
    level = (level or settings.log_level).upper()
    production = settings.environment == "production"

    json_formatter: Dict[str, Any] = {
        "()": "pythonjsonlogger.json.JsonFormatter",
        "fmt": JSON_FIELDS,
        "datefmt": DATE_FORMAT,
    }
    console_format = CONSOLE_FORMAT
    if service_name:
        json_formatter["static_fields"] = {"service": service_name}
        console_format = f"%(asctime)s [{service_name}] [%(levelname)s] %(name)s: %(message)s"

    loggers: Dict[str, Any] = {
        "trendwire": {"level": level, "handlers": ["stderr"], "propagate": False},
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING", "handlers": ["stderr"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": json_formatter,
            "console": {"format": console_format, "datefmt": DATE_FORMAT},
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "json" if production else "console",
                "stream": sys.stderr,
            }
        },
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": ["stderr"]},
    }


def setup_logging(service_name: Optional[str] = None, level: Optional[str] = None) -> None:
    """Configure structured logging using dictConfig."""
    logging.config.dictConfig(get_logging_config(service_name, level=level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
