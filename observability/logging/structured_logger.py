"""
Structured Logger
=================

Provides structured logging for the replication service.

Features:
- JSON-formatted logs
- Optional PostgreSQL persistence
- Context enrichment (job, cycle_id) per thread
- Replication lifecycle events (job start, cycle start/end, batch progress)
"""

import json
import logging
import os
import sys
import traceback
from typing import Dict, Optional, Any, List
from datetime import datetime, timezone
from contextlib import contextmanager
import threading
import uuid

import psycopg2
from psycopg2.extras import Json

# Thread-local storage for context
_context = threading.local()

ROOT_LOGGER_NAME = "replication"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


def current_context() -> Dict:
    """Copy of the calling thread's log context."""
    return dict(getattr(_context, 'data', {}))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName
        }

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        context = current_context()
        if context:
            log_entry["context"] = context

        if self.include_extra:
            for key in set(record.__dict__.keys()) - _RESERVED_ATTRS:
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class PostgresLogHandler(logging.Handler):
    """
    Handler that persists logs to PostgreSQL in batches.

    Expected table shape:

        CREATE TABLE replication.logs (
            id BIGSERIAL PRIMARY KEY,
            logged_at TIMESTAMPTZ DEFAULT now(),
            log_level VARCHAR(10),
            logger_name VARCHAR(100),
            job VARCHAR(255),
            cycle_id VARCHAR(16),
            message TEXT,
            exception TEXT,
            log_metadata JSONB
        );

    `job` and `cycle_id` come from the emitting thread's log context, so every
    row written during a sync cycle can be grouped by cycle.
    """

    def __init__(
        self,
        postgres_config: Dict,
        table: str = "replication.logs",
        batch_size: int = 100
    ):
        super().__init__()
        self.postgres_config = postgres_config
        self.table = table
        self.batch_size = batch_size

        self._buffer: List[Dict] = []
        self._lock = threading.Lock()
        self._db_conn = None

    @property
    def db_conn(self):
        if self._db_conn is None or self._db_conn.closed:
            self._db_conn = psycopg2.connect(**self.postgres_config)
        return self._db_conn

    def emit(self, record: logging.LogRecord):
        """Emit a log record."""
        try:
            context = current_context()
            log_entry = {
                "log_level": record.levelname,
                "logger_name": record.name,
                "job": context.pop("job", None),
                "cycle_id": context.pop("cycle_id", None),
                "message": record.getMessage(),
                "exception": None,
                "log_metadata": {}
            }

            if record.exc_info:
                log_entry["exception"] = "".join(
                    traceback.format_exception(*record.exc_info)
                )

            if context:
                log_entry["log_metadata"]["context"] = context

            for key in set(record.__dict__.keys()) - _RESERVED_ATTRS:
                log_entry["log_metadata"][key] = getattr(record, key)

            with self._lock:
                self._buffer.append(log_entry)

                if len(self._buffer) >= self.batch_size:
                    self._flush()

        except Exception:
            self.handleError(record)

    def _flush(self):
        """Flush buffered logs to database."""
        if not self._buffer:
            return

        try:
            with self.db_conn.cursor() as cur:
                for entry in self._buffer:
                    cur.execute(f"""
                        INSERT INTO {self.table}
                        (log_level, logger_name, job, cycle_id, message, exception, log_metadata)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """, (
                        entry["log_level"],
                        entry["logger_name"],
                        entry["job"],
                        entry["cycle_id"],
                        entry["message"],
                        entry["exception"],
                        Json(entry["log_metadata"], dumps=lambda o: json.dumps(o, default=str))
                        if entry["log_metadata"] else None
                    ))
                self.db_conn.commit()
            self._buffer.clear()
        except psycopg2.Error as e:
            # Fallback to stderr
            sys.stderr.write(f"Failed to flush logs to PostgreSQL: {e}\n")
            if self._db_conn is not None and not self._db_conn.closed:
                self._db_conn.rollback()

    def flush(self):
        with self._lock:
            self._flush()

    def close(self):
        """Close handler and flush remaining logs."""
        with self._lock:
            self._flush()
        if self._db_conn and not self._db_conn.closed:
            self._db_conn.close()
        super().close()


def configure_logging(settings: Optional[Dict] = None) -> logging.Logger:
    """
    Configure handlers on the service's root logger once per process.

    Args:
        settings: `logger` section of the task settings: level, json_format,
            log_to_file, log_path, postgres (connection dict or null)

    Returns:
        The configured root logger
    """
    settings = settings or {}
    level = getattr(logging, str(settings.get("level", "INFO")).upper(), logging.INFO)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    if settings.get("json_format", True):
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if settings.get("log_to_file"):
        log_path = settings.get("log_path", "logs/replication.log")
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if settings.get("postgres"):
        try:
            pg_handler = PostgresLogHandler(
                settings["postgres"],
                table=settings.get("postgres_table", "replication.logs")
            )
            pg_handler.setLevel(level)
            root.addHandler(pg_handler)
        except Exception as e:
            sys.stderr.write(f"Failed to initialize PostgreSQL log handler: {e}\n")

    return root


class StructuredLogger:
    """
    Structured logger with context management.

    Loggers are children of the `replication` root, so handlers set up by
    configure_logging() apply to all of them.

    Usage:
        logger = StructuredLogger("replication.sync")

        with logger.context(job="ora.PHONES->maria.phones", cycle_id=new_trace_id()):
            logger.info("Processing")  # Includes job and cycle_id
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    @contextmanager
    def context(self, **kwargs):
        """
        Context manager for adding context to all logs of this thread within scope.
        """
        if not hasattr(_context, 'data'):
            _context.data = {}

        old_data = _context.data.copy()
        _context.data.update(kwargs)

        try:
            yield
        finally:
            _context.data = old_data

    def _log(
        self,
        level: int,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        """Internal logging method."""
        extra = dict(extra or {})

        if exception:
            self._logger.log(
                level, message, extra=extra,
                exc_info=(type(exception), exception, exception.__traceback__)
            )
        else:
            self._logger.log(level, message, extra=extra)

    def debug(self, message: str, extra: Optional[Dict] = None):
        """Log debug message."""
        self._log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict] = None):
        """Log info message."""
        self._log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict] = None):
        """Log warning message."""
        self._log(logging.WARNING, message, extra)

    def error(
        self,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        """Log error message."""
        self._log(logging.ERROR, message, extra, exception)

    def critical(
        self,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        """Log critical message."""
        self._log(logging.CRITICAL, message, extra, exception)

    fatal = critical

    def log_job_start(self, job_name: str, config: Optional[Dict] = None):
        """Log job start event."""
        self.info(
            f"Starting sync job: {job_name}",
            extra={
                "event": "job_start",
                "job_name": job_name,
                "config": config
            }
        )

    def log_cycle_start(self, job_name: str, cycle_id: str):
        """Log cycle start event."""
        self.info(
            f"Sync cycle started: {job_name}",
            extra={
                "event": "cycle_start",
                "job_name": job_name,
                "cycle_id": cycle_id
            }
        )

    def log_cycle_end(
        self,
        job_name: str,
        cycle_id: str,
        status: str,
        duration_seconds: float,
        rows_loaded: int = 0
    ):
        """Log cycle end event."""
        level = logging.INFO if status == "success" else logging.ERROR
        self._log(
            level,
            f"Sync cycle completed: {job_name} ({status})",
            extra={
                "event": "cycle_end",
                "job_name": job_name,
                "cycle_id": cycle_id,
                "status": status,
                "duration_seconds": duration_seconds,
                "rows_loaded": rows_loaded
            }
        )

    def log_batch_progress(self, job_name: str, processed: int, total: int):
        """Log per-batch progress."""
        self.info(
            f"Progress: {processed}/{total} records processed",
            extra={
                "event": "batch_progress",
                "job_name": job_name,
                "processed": processed,
                "total": total
            }
        )


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger."""
    return StructuredLogger(name)


def new_trace_id() -> str:
    """Generate a new trace ID."""
    return str(uuid.uuid4())[:8]
