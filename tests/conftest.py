"""
Test configuration: repo root on sys.path plus an in-memory connector.

FakeConnector implements the replication connector contract over plain dicts
and supports failure injection per operation, so sync cycles can be exercised
without a database.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add repo root to sys.path so tests can import replication.*, observability.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from replication.config import EndpointConfig, JobConfig, ProcedureConfig  # noqa: E402
from replication.domain import ColumnInfo, Record, TableSchema  # noqa: E402
from replication.errors import ConnectorError  # noqa: E402


class FakeConnector:
    """
    In-memory DatabaseConnector.

    `tables` maps table name -> rows, `schemas` maps table name -> TableSchema.
    `fail(op, on_call=n)` makes the n-th call (1-based) of `op` raise;
    without `on_call` every call raises.
    """

    def __init__(self, name: str = "fake"):
        self.name = name
        self.tables: Dict[str, List[Record]] = {}
        self.schemas: Dict[str, TableSchema] = {}
        self.query_results: Dict[str, List[Record]] = {}
        self.query_schemas: Dict[str, TableSchema] = {}
        self.procedure_rowcount = 0

        self.calls: List[tuple] = []
        self.call_counts: Dict[str, int] = {}
        self._failures: Dict[str, Optional[int]] = {}
        self.connected = False

    # -- test helpers --

    def add_table(self, name: str, schema: TableSchema, rows: Optional[List[Record]] = None):
        schema.table = name
        self.schemas[name] = schema
        self.tables[name] = [dict(r) for r in rows or []]

    def fail(self, op: str, on_call: Optional[int] = None):
        self._failures[op] = on_call

    def calls_of(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    def _enter(self, op: str, *args):
        self.calls.append((op,) + args)
        self.call_counts[op] = self.call_counts.get(op, 0) + 1
        if op in self._failures:
            on_call = self._failures[op]
            if on_call is None or on_call == self.call_counts[op]:
                raise ConnectorError(f"injected {op} failure")

    # -- contract --

    def connect(self):
        self._enter("connect")
        self.connected = True

    def ping(self):
        self._enter("ping")

    def disconnect(self):
        self._enter("disconnect")
        self.connected = False

    def get_count(self, schema: TableSchema) -> int:
        self._enter("get_count", schema.table)
        if schema.table not in self.tables:
            raise ConnectorError(f"no such table {schema.table}")
        return len(self.tables[schema.table])

    def get_batch(self, table: str, offset: int, limit: int, schema: TableSchema) -> List[Record]:
        self._enter("get_batch", table, offset, limit)
        if table not in self.tables:
            raise ConnectorError(f"no such table {table}")
        pk = schema.primary_key
        rows = sorted(self.tables[table], key=lambda r: r[pk])
        return [dict(r) for r in rows[offset:offset + limit]]

    def create_temp_table(self, original_table: str, temp_table: str, schema: TableSchema):
        self._enter("create_temp_table", original_table, temp_table)
        self.tables[temp_table] = []
        self.schemas[temp_table] = schema

    def insert_batch(self, table: str, records: List[Record], columns: List[str]):
        self._enter("insert_batch", table, len(records))
        if table not in self.tables:
            raise ConnectorError(f"no such table {table}")
        columns = list(columns or []) or list(records[0].keys())
        self.tables[table].extend({c: r.get(c) for c in columns} for r in records)

    def swap_tables(self, original_table: str, temp_table: str):
        self._enter("swap_tables", original_table, temp_table)
        if temp_table not in self.tables:
            raise ConnectorError(f"no such table {temp_table}")
        backup = original_table + "_backup"
        self.tables.pop(backup, None)
        if original_table in self.tables:
            self.tables[backup] = self.tables.pop(original_table)
        self.tables[original_table] = self.tables.pop(temp_table)
        if temp_table in self.schemas:
            self.schemas[original_table] = self.schemas.pop(temp_table)

    def drop_table(self, table: str):
        self._enter("drop_table", table)
        self.tables.pop(table, None)
        self.schemas.pop(table, None)

    def execute_procedure(self, name: str, *args: Any) -> int:
        self._enter("execute_procedure", name, args)
        return self.procedure_rowcount

    def execute_select(self, query: str, *args: Any) -> List[Record]:
        self._enter("execute_select", query)
        if query not in self.query_results:
            raise ConnectorError(f"unknown query {query}")
        return [dict(r) for r in self.query_results[query]]

    def describe_table(self, table: str) -> TableSchema:
        self._enter("describe_table", table)
        if table not in self.schemas:
            raise ConnectorError(f"no such table {table}")
        schema = _copy_schema(self.schemas[table])
        schema.table = table
        return schema

    def execute_select_with_schema(self, query: str, *args: Any) -> TableSchema:
        """Result shape only: no keys, indexes or identity flags, like a scratch copy."""
        self._enter("execute_select_with_schema", query)
        if query not in self.query_schemas:
            raise ConnectorError(f"cannot describe {query}")
        return TableSchema(columns=[
            ColumnInfo(c.name, c.data_type, c.is_nullable) for c in self.query_schemas[query].columns
        ])


def _copy_schema(schema: TableSchema) -> TableSchema:
    return TableSchema(
        columns=[ColumnInfo(c.name, c.data_type, c.is_nullable, c.auto_increment) for c in schema.columns],
        primary_key=schema.primary_key,
        indexes=list(schema.indexes),
    )


def make_schema(*names: str, primary_key: str = "", auto_increment: str = "") -> TableSchema:
    return TableSchema(
        columns=[ColumnInfo(n, "VARCHAR(64)", auto_increment=(n == auto_increment)) for n in names],
        primary_key=primary_key,
    )


def make_job(
    source: Optional[Dict] = None,
    target: Optional[Dict] = None,
    **overrides
) -> JobConfig:
    settings = {
        "source_db": "src",
        "target_db": "tgt",
        "batch_size": 300,
        "sync_interval": 60.0,
    }
    settings.update(overrides)
    procedures = settings.pop("procedures", [])
    return JobConfig(
        source=EndpointConfig.from_dict(source or {"table": "SRC"}),
        target=EndpointConfig.from_dict(target or {"table": "tgt"}),
        post_procedures=[ProcedureConfig(n, p) for n, p in procedures],
        **settings
    )


@pytest.fixture
def source():
    return FakeConnector("src")


@pytest.fixture
def target():
    return FakeConnector("tgt")


@pytest.fixture
def populated_source(source):
    """1000-row ID/NAME source table."""
    rows = [{"ID": i, "NAME": f"row-{i}"} for i in range(1000)]
    source.add_table("SRC", make_schema("ID", "NAME", primary_key="ID"), rows)
    return source


@pytest.fixture
def live_target(target):
    """Live target table holding three stale rows."""
    rows = [{"id": -i, "name": "stale"} for i in range(1, 4)]
    target.add_table("tgt", make_schema("id", "name", primary_key="id"), rows)
    return target
