# Structured logging with per-run correlation IDs

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for the ingestion run ID
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def set_run_id(run_id: str) -> None:
    """Set the run ID for the current context"""
    run_id_ctx.set(run_id)


def add_run_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add run ID to log event"""
    run_id = run_id_ctx.get()
    if run_id:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Setup structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Note:
        Logs are written to stderr so that the CLI can print reports on
        stdout without interleaving.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_run_id,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)
