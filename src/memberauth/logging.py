"""ABOUTME: Logging configuration for memberauth, routing stdlib logging through structlog
ABOUTME: JSON lines in production, a readable console renderer in development"""

import logging.config
from typing import Any

import structlog

from memberauth import config

timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

# run on records from plain stdlib loggers, which is how every memberauth module logs
foreign_pre_chain = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    timestamper,
]


def _formatter(renderer: Any) -> dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        "foreign_pre_chain": foreign_pre_chain,
    }


def build_logging_config(development: bool) -> dict[str, Any]:
    handler_name = "dev_console" if development else "default"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": _formatter(structlog.dev.ConsoleRenderer(colors=False)),
            "json": _formatter(structlog.processors.JSONRenderer()),
        },
        "handlers": {
            "default": {
                "level": "INFO",
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
            "dev_console": {
                "level": "DEBUG",
                "class": "logging.StreamHandler",
                "formatter": "console",
            },
        },
        "loggers": {
            "": {"handlers": [handler_name], "level": "INFO"},
            # connection pool chatter from the reCAPTCHA client
            "urllib3": {"level": "WARNING"},
        },
    }


logging.config.dictConfig(build_logging_config(config.is_development()))

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


def logging_setup(log_level: int | None = None) -> None:
    """Apply LOG_LEVEL (or the given level) to the root logger and both handlers."""
    if log_level is None:
        log_level = config.get_log_level()
    for handler_name in ("default", "dev_console"):
        handler = logging.getHandlerByName(handler_name)
        if handler is not None:
            handler.setLevel(log_level)
    logging.getLogger().setLevel(log_level)

    if config.bool_environ_get("DB_ECHO"):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
