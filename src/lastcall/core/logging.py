"""
structlog configuration for lastcall.

Modules log with ``log = structlog.get_logger()`` and snake_case events,
e.g. ``log.info("trade_submitted", market_id=..., shares=...)``. Output is
console-rendered by default and JSON for log shippers.
"""
import logging
import sys
from typing import Any, Optional

import structlog

# Upstream clients that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "web3")

SECRET_KEYS = frozenset({"private_key", "api_secret", "api_passphrase", "passphrase"})


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask signing material that ends up in an event's context."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _renderer(json_output: bool) -> list[structlog.types.Processor]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog through stdlib logging to stdout and an optional file.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_output: Render events as JSON lines
        log_file: Also append events to this file
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(log_level)
    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            *_renderer(json_output),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("lastcall")
