"""
Structured logging configuration using structlog.

Session and transfer modules log through stdlib loggers under the
``chainsync`` namespace; this routes them through structlog so a host gets
JSON lines in production and console output at DEBUG. Bearer tokens,
refresh tokens and signatures are masked before rendering.
"""

import logging
import sys
from typing import Any, List, MutableMapping, Optional, TextIO

import structlog

from .config import settings

REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset({
    "authorization",
    "token",
    "access_token",
    "refresh_token",
    "refreshtoken",
    "signature",
})


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential-bearing fields bound to a log event."""
    for key in list(event_dict.keys()):
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    log_level: Optional[str] = None,
    *,
    json_logs: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        log_level: Override log level (default: from settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering; by default
            console is used at DEBUG and JSON otherwise
        stream: Where to write (default: stdout)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    processors = _shared_processors()
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs full request URLs at INFO
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("chainsync").setLevel(level)


def get_logger(name: str, **context: Any) -> Any:
    """structlog logger with ``context`` bound, for hosts that log key/value events."""
    return structlog.get_logger(name).bind(**context)
