"""Structured logging configuration with structlog."""

import logging

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from luxicle.config import Settings

# Chatty client libraries log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosmtplib")


def _environment_tagger(environment: str, version: str) -> Processor:
    def tag(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("environment", environment)
        event_dict.setdefault("version", version)
        return event_dict

    return tag


def setup_logging(settings: Settings) -> None:
    """
    Route structlog through stdlib logging.

    ``log_format`` picks JSON lines (``json``) or the colourless console
    renderer; every line carries the request context bound by the request-id
    middleware plus the environment and version.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer: Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _environment_tagger(settings.environment, settings.app_version),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
