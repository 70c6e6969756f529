"""
Tests for the command-line runner.
"""

import json
import logging

import pytest

from conftest import FakeConnector, make_schema
from observability.logging.structured_logger import ROOT_LOGGER_NAME
from replication import run_replication
from replication.connectors.registry import ConnectionRegistry


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(root.handlers), root.level, root.propagate)
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved[0]:
        root.addHandler(handler)
    root.setLevel(saved[1])
    root.propagate = saved[2]


@pytest.fixture
def config_file(tmp_path):
    raw = {
        "logger": {"level": "WARNING", "json_format": False},
        "oracle": [{"name": "src", "host": "h", "user": "u", "dbname": "d"}],
        "mariadb": [{"name": "tgt", "host": "h", "user": "u", "dbname": "d"}],
        "sync": [{
            "source_db": "src",
            "target_db": "tgt",
            "batch_size": 2,
            "source": {"table": "SRC"},
            "target": {"table": "tgt"},
        }],
    }
    path = tmp_path / "task_settings.json"
    path.write_text(json.dumps(raw))
    return str(path)


@pytest.fixture
def registry(monkeypatch):
    source, target = FakeConnector("src"), FakeConnector("tgt")
    source.add_table("SRC", make_schema("ID", "NAME", primary_key="ID"), [{"ID": i, "NAME": "n"} for i in range(5)])
    target.add_table("tgt", make_schema("id", "name", primary_key="id"))

    registry = ConnectionRegistry()
    registry.register("src", source)
    registry.register("tgt", target)
    monkeypatch.setattr(run_replication, "build_registry", lambda databases, fail_fast=False: registry)
    return registry


def test_once_runs_one_cycle_per_job(config_file, registry, capsys):
    target = registry.get("tgt")

    with pytest.raises(SystemExit) as exc:
        run_replication.main(["once", "--config", config_file])

    assert exc.value.code == 0
    assert len(target.tables["tgt"]) == 5
    assert "✓ SRC -> tgt" in capsys.readouterr().out


def test_once_fails_when_cycle_fails(config_file, registry):
    registry.get("tgt").fail("swap_tables")

    with pytest.raises(SystemExit) as exc:
        run_replication.main(["once", "--config", config_file])

    assert exc.value.code == 1


def test_test_command_reports_failures(config_file, monkeypatch, capsys):
    registry = ConnectionRegistry()
    registry.register("src", FakeConnector("src"))
    registry.mark_failed("tgt", "connection refused")
    monkeypatch.setattr(run_replication, "build_registry", lambda databases, fail_fast=False: registry)

    with pytest.raises(SystemExit) as exc:
        run_replication.main(["test", "--config", config_file])

    out = capsys.readouterr().out
    assert exc.value.code == 1
    assert "✓ oracle src" in out
    assert "✗ mariadb tgt: connection refused" in out


def test_invalid_config_exits_non_zero(tmp_path, capsys):
    (tmp_path / "broken.json").write_text("{")

    with pytest.raises(SystemExit) as exc:
        run_replication.main(["once", "--config", str(tmp_path / "broken.json")])

    assert exc.value.code == 1
    assert "ConfigError" in capsys.readouterr().err


def test_duplicate_column_config_exits_cleanly(config_file, registry, capsys):
    with open(config_file) as f:
        raw = json.load(f)
    raw["sync"][0]["target"]["columns"] = [{"name": "x"}, {"name": "x"}]
    with open(config_file, "w") as f:
        json.dump(raw, f)

    with pytest.raises(SystemExit) as exc:
        run_replication.main(["once", "--config", config_file])

    assert exc.value.code == 1
    assert "Duplicate column name" in capsys.readouterr().err
