"""
MariaDB Connector
=================

Connector for MariaDB/MySQL databases, used as replication source or target.

- Pagination: LIMIT/OFFSET ordered by primary key
- Swap: single multi-table RENAME TABLE statement (atomic in the engine)
- Table introspection: SHOW COLUMNS + SHOW INDEX on the live table
- Query shape introspection: session-scoped temporary table + SHOW COLUMNS
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL

from ..domain import ColumnInfo, Record, TableSchema
from ..errors import ConnectorError
from .base import frame_to_records, split_identifier, translate_errors

logger = logging.getLogger(__name__)


def quote(name: str) -> str:
    """Backtick-quote a possibly schema-qualified identifier."""
    return ".".join(f"`{part.strip('`')}`" for part in split_identifier(name))


def quote_columns(columns: str) -> str:
    """Quote a comma-joined column list such as a composite primary key."""
    return ", ".join(quote(col.strip()) for col in columns.split(",") if col.strip())


def schema_from_show(
    columns_df: pd.DataFrame,
    index_df: Optional[pd.DataFrame] = None,
    table: Optional[str] = None
) -> TableSchema:
    """
    Build a TableSchema from SHOW COLUMNS (and optionally SHOW INDEX) output.

    The primary key keeps its index column order; other indexes become
    comma-joined column lists, the form create_temp_table takes.
    """
    columns = []
    for _, row in columns_df.iterrows():
        columns.append(ColumnInfo(
            name=row["Field"],
            data_type=str(row["Type"]),
            is_nullable=row["Null"] == "YES",
            auto_increment="auto_increment" in str(row.get("Extra") or "").lower()
        ))

    primary_key = []
    indexes = []
    if index_df is not None and not index_df.empty:
        index_df = index_df.sort_values(["Key_name", "Seq_in_index"])
        for index_name, group in index_df.groupby("Key_name", sort=False):
            if index_name == "PRIMARY":
                primary_key = list(group["Column_name"])
            else:
                indexes.append(",".join(group["Column_name"]))

    return TableSchema(columns=columns, primary_key=",".join(primary_key), indexes=indexes, table=table)


class MariaDBConnector:
    """
    MariaDB/MySQL connector backed by a pooled SQLAlchemy engine (PyMySQL driver).
    """

    def __init__(self, config: Dict):
        """
        Initialize MariaDB connector.

        Args:
            config: Connection configuration dict with name, host, port, user,
                password, dbname and optional timeout (seconds)
        """
        self.config = config
        self.name = config.get("name", "mariadb")
        self.engine = None

    def connect(self):
        """Create the engine and verify the connection."""
        with translate_errors(f"Create engine for MariaDB {self.name}"):
            url = URL.create(
                "mysql+pymysql",
                username=self.config["user"],
                password=self.config.get("password"),
                host=self.config["host"],
                port=self.config.get("port", 3306),
                database=self.config["dbname"],
            )
            self.engine = create_engine(
                url,
                pool_size=self.config.get("pool_size", 25),
                max_overflow=0,
                pool_recycle=300,
                pool_pre_ping=True,
                connect_args={"connect_timeout": self.config.get("timeout", 5)},
            )
        self.ping()
        logger.info(f"Connected to MariaDB {self.name}: {self.config['host']}:{self.config.get('port', 3306)}/{self.config['dbname']}")

    def ping(self):
        """Verify the database answers."""
        if self.engine is None:
            raise ConnectorError(f"MariaDB {self.name} is not connected")
        with translate_errors(f"Ping MariaDB {self.name}"):
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))

    def disconnect(self):
        """Dispose the connection pool."""
        if self.engine:
            self.engine.dispose()
            self.engine = None
            logger.info(f"MariaDB connection {self.name} closed")

    # =========================================
    # BATCH OPERATIONS
    # =========================================

    def get_count(self, schema: TableSchema) -> int:
        """
        Get row count for the table a schema describes.

        Args:
            schema: Table schema; `schema.table` and `schema.primary_key` must be set

        Returns:
            Row count
        """
        if not schema.table:
            raise ConnectorError("Cannot count rows: schema has no table name")
        if not schema.primary_key:
            raise ConnectorError(f"Cannot count rows of {schema.table}: schema has no primary key")

        query = f"SELECT COUNT(*) FROM {quote(schema.table)}"
        with translate_errors(f"Count rows of {schema.table}"):
            with self.engine.connect() as conn:
                return int(conn.execute(text(query)).scalar())

    def get_batch(self, table: str, offset: int, limit: int, schema: TableSchema) -> List[Record]:
        """
        Read one page of a table ordered by its primary key.

        Args:
            table: Table name
            offset: Rows to skip
            limit: Maximum rows to return
            schema: Table schema (columns to select, ordering key)

        Returns:
            List of records
        """
        if limit <= 0:
            raise ConnectorError("Batch size must be positive")
        if offset < 0:
            raise ConnectorError("Offset cannot be negative")
        if not schema.primary_key:
            raise ConnectorError(f"Cannot page through {table}: schema has no primary key")

        select_clause = ", ".join(quote(c) for c in schema.column_names) or "*"
        query = (
            f"SELECT {select_clause} FROM {quote(table)} "
            f"ORDER BY {quote_columns(schema.primary_key)} "
            f"LIMIT :limit OFFSET :offset"
        )
        with translate_errors(f"Read batch from {table} at offset {offset}"):
            with self.engine.connect() as conn:
                df = pd.read_sql(text(query), conn, params={"limit": limit, "offset": offset})
        return frame_to_records(df)

    def create_temp_table(self, original_table: str, temp_table: str, schema: TableSchema):
        """
        Create the staging table, replacing any leftover from an earlier cycle.

        Without columns in the schema the staging table clones the original's shape.
        """
        if schema.columns:
            definitions = []
            for col in schema.columns:
                definition = f"{quote(col.name)} {col.data_type}"
                if not col.is_nullable:
                    definition += " NOT NULL"
                if col.auto_increment:
                    definition += " AUTO_INCREMENT"
                definitions.append(definition)
            if schema.primary_key:
                definitions.append(f"PRIMARY KEY ({quote_columns(schema.primary_key)})")
            for index in schema.indexes:
                index_name = "idx_" + "_".join(c.strip() for c in index.split(","))
                definitions.append(f"INDEX {quote(index_name)} ({quote_columns(index)})")
            create_stmt = f"CREATE TABLE {quote(temp_table)} ({', '.join(definitions)})"
        else:
            create_stmt = f"CREATE TABLE {quote(temp_table)} LIKE {quote(original_table)}"

        with translate_errors(f"Create temp table {temp_table}"):
            with self.engine.begin() as conn:
                conn.execute(text(f"DROP TABLE IF EXISTS {quote(temp_table)}"))
                conn.execute(text(create_stmt))
        logger.debug(f"Created temp table {temp_table}")

    def insert_batch(self, table: str, records: List[Record], columns: List[str]):
        """
        Insert records in a single transaction.

        Args:
            table: Target table
            records: Records to insert
            columns: Columns to insert; missing record keys are inserted as NULL.
                When empty, the first record's keys are used.
        """
        if not records:
            return
        columns = list(columns or []) or list(records[0].keys())

        placeholders = ", ".join(f":c{i}" for i in range(len(columns)))
        stmt = (
            f"INSERT INTO {quote(table)} ({', '.join(quote(c) for c in columns)}) "
            f"VALUES ({placeholders})"
        )
        params = [
            {f"c{i}": record.get(col) for i, col in enumerate(columns)}
            for record in records
        ]
        with translate_errors(f"Insert {len(records)} rows into {table}"):
            with self.engine.begin() as conn:
                conn.execute(text(stmt), params)

    # =========================================
    # TABLE SWAP
    # =========================================

    def _table_exists(self, conn, table: str) -> bool:
        parts = split_identifier(table)
        if len(parts) == 2:
            query = text(
                "SELECT COUNT(*) FROM information_schema.tables "
                "WHERE table_schema = :schema AND table_name = :table"
            )
            params = {"schema": parts[0], "table": parts[1]}
        else:
            query = text(
                "SELECT COUNT(*) FROM information_schema.tables "
                "WHERE table_schema = DATABASE() AND table_name = :table"
            )
            params = {"table": parts[-1]}
        return conn.execute(query, params).scalar() > 0

    def swap_tables(self, original_table: str, temp_table: str):
        """
        Swap the populated temp table in for the original.

        The previous backup is dropped first, then original -> backup and
        temp -> original are renamed in one RENAME TABLE statement, which the
        engine applies atomically. On the very first cycle there is no original,
        so the temp table is simply renamed into place.
        """
        backup_table = original_table + "_backup"
        with translate_errors(f"Swap {temp_table} into {original_table}"):
            with self.engine.begin() as conn:
                conn.execute(text(f"DROP TABLE IF EXISTS {quote(backup_table)}"))
                if self._table_exists(conn, original_table):
                    swap_stmt = (
                        f"RENAME TABLE {quote(original_table)} TO {quote(backup_table)}, "
                        f"{quote(temp_table)} TO {quote(original_table)}"
                    )
                else:
                    logger.warning(f"{original_table} does not exist yet, renaming {temp_table} into place")
                    swap_stmt = f"RENAME TABLE {quote(temp_table)} TO {quote(original_table)}"
                conn.execute(text(swap_stmt))
        logger.debug(f"Swapped {temp_table} -> {original_table} (backup: {backup_table})")

    def drop_table(self, table: str):
        """Drop a table if it exists."""
        with translate_errors(f"Drop table {table}"):
            with self.engine.begin() as conn:
                conn.execute(text(f"DROP TABLE IF EXISTS {quote(table)}"))

    # =========================================
    # PROCEDURES & AD-HOC QUERIES
    # =========================================

    def execute_procedure(self, name: str, *args: Any) -> int:
        """
        Call a stored procedure.

        Returns:
            Affected row count reported by the driver
        """
        placeholders = ", ".join(f":p{i}" for i in range(len(args)))
        params = {f"p{i}": value for i, value in enumerate(args)}
        with translate_errors(f"Execute procedure {name}"):
            with self.engine.begin() as conn:
                result = conn.execute(text(f"CALL {quote(name)}({placeholders})"), params)
                return max(result.rowcount, 0)

    def execute_select(self, query: str, *args: Any) -> List[Record]:
        """
        Run an arbitrary SELECT.

        Args:
            query: SQL using the driver's `%s` placeholders
            args: Positional parameters

        Returns:
            List of records
        """
        with translate_errors("Execute select"):
            with self.engine.connect() as conn:
                df = pd.read_sql(query, conn, params=tuple(args) or None)
        return frame_to_records(df)

    def describe_table(self, table: str) -> TableSchema:
        """
        Describe an existing table with SHOW COLUMNS and SHOW INDEX.

        Unlike a query's result shape this carries the primary key, secondary
        indexes and AUTO_INCREMENT flags, so a staging table rebuilt from it
        keeps them across swaps.
        """
        with translate_errors(f"Describe table {table}"):
            with self.engine.connect() as conn:
                columns_df = pd.read_sql(text(f"SHOW COLUMNS FROM {quote(table)}"), conn)
                index_df = pd.read_sql(text(f"SHOW INDEX FROM {quote(table)}"), conn)
        if columns_df.empty:
            raise ConnectorError(f"Table {table} has no columns")
        return schema_from_show(columns_df, index_df, table=table)

    def execute_select_with_schema(self, query: str, *args: Any) -> TableSchema:
        """
        Describe a SELECT's result shape.

        The query is materialised (without rows) into a session-scoped temporary
        table on a single pooled connection, then described with SHOW COLUMNS.
        A result shape has no keys or indexes of its own.
        """
        scratch = f"shape_{uuid.uuid4().hex[:12]}"
        create_stmt = f"CREATE TEMPORARY TABLE {quote(scratch)} AS SELECT * FROM ({query}) AS src WHERE 1=0"

        with translate_errors("Describe query shape"):
            with self.engine.connect() as conn:
                try:
                    conn.exec_driver_sql(create_stmt, tuple(args) or None)
                    columns_df = pd.read_sql(text(f"SHOW COLUMNS FROM {quote(scratch)}"), conn)
                finally:
                    conn.exec_driver_sql(f"DROP TEMPORARY TABLE IF EXISTS {quote(scratch)}")

        return schema_from_show(columns_df)
