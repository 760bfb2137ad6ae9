"""structlog setup for the spinwheel service.

Log lines are JSON on stdout by default. ``LOG_TO_FILE=true`` with
``LOG_DIR`` set switches to a size-rotated file instead.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from . import __version__

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_TRUTHY = ("true", "1", "yes", "on")


def _build_handler(service_name: str) -> logging.Handler:
    if os.getenv("LOG_TO_FILE", "false").lower() not in _TRUTHY:
        return logging.StreamHandler(sys.stdout)

    log_dir = os.getenv("LOG_DIR")
    if not log_dir:
        raise ValueError("LOG_TO_FILE is enabled but LOG_DIR is not set")

    path = Path(log_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path / f"{service_name}.log",
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )


def _service_metadata(service_name: str, component: str | None):
    extra = {"service": service_name, "version": __version__}
    if component:
        extra["component"] = component

    def add_service_metadata(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.update(extra)
        return event_dict

    return add_service_metadata


def configure_json_logging(
    service_name: str = "spinwheel",
    level: str = "INFO",
    json_output: bool = True,
    component: str | None = None,
) -> None:
    """Route structlog through stdlib logging with a JSON (or console) renderer.

    Args:
        service_name: Value of the ``service`` field and the log file name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; unknown names fall back to INFO
        json_output: JSON lines when True, coloured console output when False
        component: Optional ``component`` field
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = _build_handler(service_name)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(handlers=[handler], level=log_level, force=True)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            # event_id / user bound per redemption
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _service_metadata(service_name, component),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_env(service_name: str = "spinwheel", component: str | None = None) -> None:
    """Same as ``configure_json_logging`` with level and format taken from LOG_LEVEL / JSON_LOGS."""
    configure_json_logging(
        service_name=service_name,
        level=os.getenv("LOG_LEVEL", "INFO"),
        json_output=os.getenv("JSON_LOGS", "true").lower() in _TRUTHY,
        component=component,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_event_context(event_id: str | None = None, user: str | None = None) -> None:
    """Attach the redemption's id and viewer to every log line in the current task."""
    context = {key: value for key, value in (("event_id", event_id), ("user", user)) if value}
    if context:
        structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
