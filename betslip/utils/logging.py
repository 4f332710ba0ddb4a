"""
Structured logging for the betslip service.

Every record carries ``service`` so feed, cart and submission logs can be
told apart from the collaborator API's own output once they share a sink.
Context is passed as keyword fields (``event_id``, ``outcome``, ``line_id``,
``source``) rather than formatted into the message.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, Iterable

import structlog

SERVICE_NAME = "betslip"

# Client libraries that log every request or frame at INFO/DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "aiohttp.access")


def _coerce_level(log_level: str) -> int:
    if not log_level:
        return logging.INFO
    return getattr(logging, log_level.upper(), logging.INFO)


def _service_tagger(service: str):
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service)
        return event_dict

    return add_service


def configure_logging(
    log_level: str = "INFO",
    log_file: str = "logs/betslip.log",
    log_json: bool = False,
    service: str = SERVICE_NAME,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """
    Configure stdlib logging and structlog.

    Safe to call more than once; later calls replace the root handlers.
    An empty ``log_file`` logs to stdout only.
    """
    level = _coerce_level(log_level)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_path = log_file.strip() if log_file else ""
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        _service_tagger(service),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
