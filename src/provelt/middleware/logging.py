"""structlog setup shared by the API and the reconciliation worker.

Audit events (``provelt.issuance``, ``provelt.reconciliation``, ``provelt.http``)
are structlog loggers: every line carries the service, environment and chain
id, plus the request context bound by RequestIdMiddleware. Routine module
logs stay on stdlib logging.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from provelt.config import Settings

SERVICE_NAME = "provelt"

# Chatty third-party loggers; web3's HTTP provider logs every RPC at DEBUG.
QUIET_LOGGERS = ("web3", "urllib3", "aiosqlite", "asyncio")


def service_context(settings: Settings) -> structlog.types.Processor:
    """Processor stamping each event with where it came from."""
    static = {
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "chain_id": settings.chain_id,
    }

    def add_service_context(
        _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        for key, value in static.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings) -> None:
    """JSON lines in deployed environments, console rendering for local work."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            service_context(settings),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
