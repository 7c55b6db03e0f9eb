"""
structlog setup for the bridge API.

Every record, including plain ``logging.getLogger(__name__)`` calls, goes
through one processor chain. Session challenge tokens and wallet signatures
are masked before rendering.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog

from .config import settings

SERVICE_NAME = "tosolana"

# Event keys whose values must never reach log output
REDACTED_KEYS = frozenset({"challenge", "signature", "session_auth", "sessionAuth", "authorization"})
REDACTED = "***"

NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "hpack")


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("env", settings.environment)
    return event_dict


def _use_console(level: int) -> bool:
    fmt = settings.log_format.lower()
    if fmt in ("json", "console"):
        return fmt == "console"
    return level == logging.DEBUG and not settings.is_production


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    shared: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if _use_console(level):
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        shared.append(structlog.processors.dict_tracebacks)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
