"""
Tests for structured logging: JSON formatting, context propagation and
handler setup.
"""

import json
import logging
import threading

import pytest

from observability.logging.structured_logger import (
    ROOT_LOGGER_NAME,
    JsonFormatter,
    PostgresLogHandler,
    StructuredLogger,
    configure_logging,
    current_context,
    new_trace_id,
)


@pytest.fixture
def root_logger():
    """Restore the service root logger after configure_logging() rewires it."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(root.handlers), root.level, root.propagate)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved[0]:
        root.addHandler(handler)
    root.setLevel(saved[1])
    root.propagate = saved[2]


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(JsonFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


@pytest.fixture
def captured(root_logger):
    handler = ListHandler()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)
    return handler


def test_json_fields(captured):
    StructuredLogger("replication.sync").info("hello", extra={"table": "phones"})

    entry = captured.lines[-1]
    assert entry["level"] == "INFO"
    assert entry["logger"] == "replication.sync"
    assert entry["message"] == "hello"
    assert entry["table"] == "phones"
    assert entry["timestamp"].endswith("Z")


def test_exception_is_serialized(captured):
    try:
        raise ValueError("bad row")
    except ValueError as e:
        StructuredLogger("replication.sync").error("failed", exception=e)

    entry = captured.lines[-1]
    assert entry["exception"]["type"] == "ValueError"
    assert entry["exception"]["message"] == "bad row"
    assert any("bad row" in line for line in entry["exception"]["traceback"])


def test_context_is_attached_and_restored(captured):
    logger = StructuredLogger("replication.sync")

    with logger.context(job="a->b", cycle_id="1234"):
        with logger.context(stage="swap"):
            logger.info("inner")
        logger.info("outer")
    logger.info("after")

    inner, outer, after = captured.lines[-3:]
    assert inner["context"] == {"job": "a->b", "cycle_id": "1234", "stage": "swap"}
    assert outer["context"] == {"job": "a->b", "cycle_id": "1234"}
    assert "context" not in after


def test_context_is_per_thread():
    logger = StructuredLogger("replication.sync")
    seen = {}

    def other():
        seen["context"] = current_context()

    with logger.context(job="main"):
        thread = threading.Thread(target=other)
        thread.start()
        thread.join()

    assert seen["context"] == {}


def test_lifecycle_events(captured):
    logger = StructuredLogger("replication.sync")

    logger.log_job_start("a->b", {"interval_seconds": 60})
    logger.log_cycle_start("a->b", "c1")
    logger.log_batch_progress("a->b", 300, 1000)
    logger.log_cycle_end("a->b", "c1", "failed", 1.5, 300)

    events = [entry["event"] for entry in captured.lines[-4:]]
    assert events == ["job_start", "cycle_start", "batch_progress", "cycle_end"]
    assert captured.lines[-2]["message"] == "Progress: 300/1000 records processed"
    assert captured.lines[-1]["level"] == "ERROR"


def test_fatal_is_critical(captured):
    StructuredLogger("replication.main").fatal("stop")

    assert captured.lines[-1]["level"] == "CRITICAL"


def test_configure_logging_json_console(root_logger, capsys):
    configure_logging({"level": "DEBUG", "json_format": True})

    StructuredLogger("replication.test").debug("visible")

    out = capsys.readouterr().out.strip().splitlines()[-1]
    assert json.loads(out)["message"] == "visible"
    assert root_logger.propagate is False


def test_configure_logging_level_filters(root_logger, capsys):
    configure_logging({"level": "WARNING", "json_format": False})

    StructuredLogger("replication.test").info("hidden")
    StructuredLogger("replication.test").warning("shown")

    out = capsys.readouterr().out
    assert "hidden" not in out
    assert "WARNING - shown" in out


def test_configure_logging_file(root_logger, tmp_path):
    log_path = tmp_path / "logs" / "replication.log"
    configure_logging({"log_to_file": True, "log_path": str(log_path)})

    StructuredLogger("replication.test").info("to file")
    for handler in root_logger.handlers:
        handler.flush()

    assert "to file" in log_path.read_text()


def test_configure_logging_is_idempotent(root_logger):
    configure_logging({})
    configure_logging({})

    assert len(root_logger.handlers) == 1


def test_postgres_handler_buffers_until_batch_size(monkeypatch):
    handler = PostgresLogHandler({"host": "x"}, batch_size=3)
    flushed = []
    monkeypatch.setattr(handler, "_flush", lambda: flushed.append(list(handler._buffer)) or handler._buffer.clear())

    record = logging.LogRecord("replication.sync", logging.INFO, __file__, 1, "msg", None, None)
    handler.emit(record)
    handler.emit(record)
    assert flushed == []

    handler.emit(record)
    assert len(flushed) == 1
    assert flushed[0][0]["message"] == "msg"


def test_postgres_handler_lifts_job_and_cycle(monkeypatch):
    handler = PostgresLogHandler({"host": "x"}, batch_size=10)
    monkeypatch.setattr(handler, "_flush", lambda: None)
    logger = StructuredLogger("replication.sync")

    record = logging.LogRecord("replication.sync", logging.INFO, __file__, 1, "msg", None, None)
    with logger.context(job="a->b", cycle_id="c1", stage="swap"):
        handler.emit(record)

    entry = handler._buffer[-1]
    assert entry["job"] == "a->b"
    assert entry["cycle_id"] == "c1"
    assert entry["log_metadata"]["context"] == {"stage": "swap"}
    assert current_context() == {}


def test_trace_ids_are_short_and_unique():
    ids = {new_trace_id() for _ in range(100)}

    assert len(ids) == 100
    assert all(len(i) == 8 for i in ids)
