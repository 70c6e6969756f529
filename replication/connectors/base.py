"""
Connector Contract
==================

The capability set every database engine must provide to take part in replication.
The sync service only ever talks to this contract; engine specifics (pagination,
rename mechanics, DDL) live entirely inside the implementations.
"""

from contextlib import contextmanager
from typing import Any, List, Protocol, runtime_checkable

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError

from ..domain import Record, TableSchema
from ..errors import ConnectorError


@runtime_checkable
class DatabaseConnector(Protocol):
    """Structural interface implemented once per database engine."""

    def connect(self) -> None:
        """Open the connection pool and verify it."""

    def ping(self) -> None:
        """Raise if the database is unreachable."""

    def disconnect(self) -> None:
        """Release the connection pool."""

    def get_count(self, schema: TableSchema) -> int:
        """Row count of `schema.table`."""

    def get_batch(
        self,
        table: str,
        offset: int,
        limit: int,
        schema: TableSchema
    ) -> List[Record]:
        """
        Read `limit` rows starting at `offset`.

        Rows must come back in a stable order (by primary key) so repeated calls
        over an unmodified table page through it without gaps or duplicates.
        """

    def create_temp_table(self, original_table: str, temp_table: str, schema: TableSchema) -> None:
        """Create `temp_table` shaped like `schema`, replacing any existing table of that name."""

    def insert_batch(self, table: str, records: List[Record], columns: List[str]) -> None:
        """Insert all records in one transaction (all or nothing)."""

    def swap_tables(self, original_table: str, temp_table: str) -> None:
        """Substitute `temp_table` for `original_table`, keeping one backup generation."""

    def drop_table(self, table: str) -> None:
        """Drop `table`; succeed silently when it does not exist."""

    def execute_procedure(self, name: str, *args: Any) -> int:
        """Run a stored procedure and return the affected row count."""

    def execute_select(self, query: str, *args: Any) -> List[Record]:
        """Run a SELECT and return its rows."""

    def describe_table(self, table: str) -> TableSchema:
        """Describe an existing table: columns, primary key and secondary indexes."""

    def execute_select_with_schema(self, query: str, *args: Any) -> TableSchema:
        """Describe the result shape of an ad-hoc SELECT (no keys or indexes)."""


def frame_to_records(df: pd.DataFrame) -> List[Record]:
    """
    Convert a DataFrame read with `pd.read_sql` into records.

    pandas represents SQL NULL as NaN/NaT; records carry `None` instead.
    """
    if df.empty:
        return []
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def split_identifier(name: str) -> List[str]:
    """Split `schema.table` into its parts."""
    return [part for part in name.split(".") if part]


@contextmanager
def translate_errors(action: str):
    """
    Re-raise driver/SQLAlchemy failures as ConnectorError naming the failed action.

    A missing DBAPI driver surfaces as ImportError from `create_engine` and is
    translated the same way.
    """
    try:
        yield
    except ConnectorError:
        raise
    except (SQLAlchemyError, ImportError) as e:
        raise ConnectorError(f"{action} failed: {e}") from e
