"""
Replication Observability Module
================================

Structured logging for the replication service.

Usage:
    from observability import StructuredLogger, configure_logging

    configure_logging({"level": "INFO", "json_format": True})
    logger = StructuredLogger("replication.sync")
    logger.info("Cycle started", extra={"table": "phones"})
"""

from .logging.structured_logger import (
    JsonFormatter,
    PostgresLogHandler,
    StructuredLogger,
    configure_logging,
    get_logger,
    new_trace_id,
)

__version__ = "1.0.0"
__all__ = [
    "JsonFormatter",
    "PostgresLogHandler",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "new_trace_id",
]
