"""
Oracle Connector
================

Connector for Oracle databases, used as replication source or target.

- Pagination: ROW_NUMBER() OVER (ORDER BY primary key)
- Swap: one PL/SQL block renaming original -> backup and temp -> original,
  undoing the first rename if the second one fails
- Table introspection: all_tab_columns, primary key constraint, all_ind_columns
- Query shape introspection: empty CREATE TABLE AS SELECT + user_tab_columns
"""

import logging
import uuid
from typing import Any, Dict, List

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL

from ..domain import ColumnInfo, Record, TableSchema
from ..errors import ConnectorError
from .base import frame_to_records, split_identifier, translate_errors

logger = logging.getLogger(__name__)

# ORA-00942: table or view does not exist
DROP_IF_EXISTS_BLOCK = """
BEGIN
    EXECUTE IMMEDIATE 'DROP TABLE {table}';
EXCEPTION
    WHEN OTHERS THEN
        IF SQLCODE != -942 THEN
            RAISE;
        END IF;
END;
"""

SWAP_BLOCK = """
BEGIN
    EXECUTE IMMEDIATE 'ALTER TABLE {original} RENAME TO {backup_name}';
    BEGIN
        EXECUTE IMMEDIATE 'ALTER TABLE {temp} RENAME TO {original_name}';
    EXCEPTION
        WHEN OTHERS THEN
            EXECUTE IMMEDIATE 'ALTER TABLE {backup} RENAME TO {original_name}';
            RAISE;
    END;
END;
"""


def unqualified(name: str) -> str:
    """Table name without its schema prefix (RENAME TO only accepts bare names)."""
    return split_identifier(name)[-1]


def restore_case(df: pd.DataFrame) -> pd.DataFrame:
    """
    Undo SQLAlchemy's lower-casing of case-insensitive Oracle column names.

    Oracle reports unquoted identifiers upper-case and the dictionary views do
    too, so records keep the names the schema describes.
    """
    df.columns = [c.upper() if c == c.lower() else c for c in df.columns]
    return df


DICTIONARY_COLUMNS = (
    "column_name, data_type, data_length, data_precision, data_scale, nullable, identity_column"
)

LENGTH_TYPES = ("VARCHAR2", "NVARCHAR2", "CHAR", "NCHAR", "RAW")


def columns_from_dictionary(df: pd.DataFrame) -> List[ColumnInfo]:
    """Column definitions from a *_tab_columns frame (upper-cased column labels)."""
    columns = []
    for _, row in df.iterrows():
        data_type = row["DATA_TYPE"]
        precision = row.get("DATA_PRECISION")
        if data_type in LENGTH_TYPES:
            data_type = f"{data_type}({int(row['DATA_LENGTH'])})"
        elif data_type == "NUMBER" and pd.notna(precision):
            scale = row.get("DATA_SCALE")
            data_type = f"NUMBER({int(precision)},{int(scale) if pd.notna(scale) else 0})"
        columns.append(ColumnInfo(
            name=row["COLUMN_NAME"],
            data_type=data_type,
            is_nullable=row["NULLABLE"] == "Y",
            auto_increment=row.get("IDENTITY_COLUMN") == "YES"
        ))
    return columns


class OracleConnector:
    """
    Oracle connector backed by a pooled SQLAlchemy engine (python-oracledb driver).
    """

    def __init__(self, config: Dict):
        """
        Initialize Oracle connector.

        Args:
            config: Connection configuration dict with name, host, port, user,
                password, dbname (service name) and optional timeout (seconds)
        """
        self.config = config
        self.name = config.get("name", "oracle")
        self.engine = None

    def connect(self):
        """Create the engine and verify the connection."""
        with translate_errors(f"Create engine for Oracle {self.name}"):
            url = URL.create(
                "oracle+oracledb",
                username=self.config["user"],
                password=self.config.get("password"),
                host=self.config["host"],
                port=self.config.get("port", 1521),
                query={"service_name": self.config["dbname"]},
            )
            self.engine = create_engine(
                url,
                pool_size=self.config.get("pool_size", 20),
                max_overflow=0,
                pool_recycle=300,
                pool_pre_ping=True,
                connect_args={"tcp_connect_timeout": self.config.get("timeout", 5)},
            )
        self.ping()
        logger.info(f"Connected to Oracle {self.name}: {self.config['host']}:{self.config.get('port', 1521)}/{self.config['dbname']}")

    def ping(self):
        """Verify the database answers."""
        if self.engine is None:
            raise ConnectorError(f"Oracle {self.name} is not connected")
        with translate_errors(f"Ping Oracle {self.name}"):
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1 FROM DUAL"))

    def disconnect(self):
        """Dispose the connection pool."""
        if self.engine:
            self.engine.dispose()
            self.engine = None
            logger.info(f"Oracle connection {self.name} closed")

    def _read_frame(self, conn, query, params=None) -> pd.DataFrame:
        return restore_case(pd.read_sql(query, conn, params=params))

    # =========================================
    # BATCH OPERATIONS
    # =========================================

    def get_count(self, schema: TableSchema) -> int:
        """Row count of `schema.table`."""
        if not schema.table:
            raise ConnectorError("Cannot count rows: schema has no table name")
        if not schema.primary_key:
            raise ConnectorError(f"Cannot count rows of {schema.table}: schema has no primary key")

        with translate_errors(f"Count rows of {schema.table}"):
            with self.engine.connect() as conn:
                return int(conn.execute(text(f"SELECT COUNT(*) FROM {schema.table}")).scalar())

    def get_batch(self, table: str, offset: int, limit: int, schema: TableSchema) -> List[Record]:
        """
        Read one page of a table numbered by ROW_NUMBER over the primary key.

        Args:
            table: Table name
            offset: Rows to skip
            limit: Maximum rows to return
            schema: Table schema (columns to select, ordering key)

        Returns:
            List of records keyed by the schema's column names
        """
        if limit <= 0:
            raise ConnectorError("Batch size must be positive")
        if offset < 0:
            raise ConnectorError("Offset cannot be negative")
        if not schema.primary_key:
            raise ConnectorError(f"Cannot page through {table}: schema has no primary key")

        select_clause = ", ".join(schema.column_names) or "*"
        inner_select = ", ".join(schema.column_names) or f"{table}.*"
        query = (
            f"SELECT {select_clause} FROM ("
            f"SELECT {inner_select}, ROW_NUMBER() OVER (ORDER BY {schema.primary_key}) AS rn__ "
            f"FROM {table}"
            f") WHERE rn__ > :lo AND rn__ <= :hi ORDER BY rn__"
        )
        with translate_errors(f"Read batch from {table} at offset {offset}"):
            with self.engine.connect() as conn:
                df = self._read_frame(conn, text(query), {"lo": offset, "hi": offset + limit})
        if schema.columns:
            df.columns = schema.column_names
        else:
            df = df.drop(columns=["RN__"], errors="ignore")
        return frame_to_records(df)

    def create_temp_table(self, original_table: str, temp_table: str, schema: TableSchema):
        """
        Create the staging table as a regular heap table, replacing any leftover.

        Without columns in the schema the staging table is an empty copy of the original.
        """
        statements = [DROP_IF_EXISTS_BLOCK.format(table=temp_table)]
        if schema.columns:
            definitions = []
            for col in schema.columns:
                definition = f"{col.name} {col.data_type}"
                if col.auto_increment:
                    definition += " GENERATED BY DEFAULT AS IDENTITY"
                if not col.is_nullable:
                    definition += " NOT NULL"
                definitions.append(definition)
            if schema.primary_key:
                definitions.append(f"PRIMARY KEY ({schema.primary_key})")
            statements.append(f"CREATE TABLE {temp_table} ({', '.join(definitions)})")
            # Index names are schema-wide and keep their name when the table is
            # renamed, so each staging table gets a fresh set.
            tag = uuid.uuid4().hex[:8].upper()
            for position, index in enumerate(schema.indexes, start=1):
                statements.append(f"CREATE INDEX IX_{tag}_{position} ON {temp_table} ({index})")
        else:
            statements.append(f"CREATE TABLE {temp_table} AS SELECT * FROM {original_table} WHERE 1=0")

        with translate_errors(f"Create temp table {temp_table}"):
            with self.engine.begin() as conn:
                for stmt in statements:
                    conn.exec_driver_sql(stmt)
        logger.debug(f"Created temp table {temp_table}")

    def insert_batch(self, table: str, records: List[Record], columns: List[str]):
        """Insert records with array binding in a single transaction."""
        if not records:
            return
        columns = list(columns or []) or list(records[0].keys())

        placeholders = ", ".join(f":c{i}" for i in range(len(columns)))
        stmt = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
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
            query = text("SELECT COUNT(*) FROM all_tables WHERE owner = :owner AND table_name = :name")
            params = {"owner": parts[0].upper(), "name": parts[1].upper()}
        else:
            query = text("SELECT COUNT(*) FROM user_tables WHERE table_name = :name")
            params = {"name": parts[-1].upper()}
        return conn.execute(query, params).scalar() > 0

    def swap_tables(self, original_table: str, temp_table: str):
        """
        Swap the populated temp table in for the original.

        Oracle DDL commits implicitly, so both renames run inside one PL/SQL
        block; if the second rename fails the first one is reverted before the
        error propagates.
        """
        backup_table = original_table + "_backup"
        with translate_errors(f"Swap {temp_table} into {original_table}"):
            with self.engine.begin() as conn:
                conn.exec_driver_sql(DROP_IF_EXISTS_BLOCK.format(table=backup_table))
                if self._table_exists(conn, original_table):
                    conn.exec_driver_sql(SWAP_BLOCK.format(
                        original=original_table,
                        original_name=unqualified(original_table),
                        backup=backup_table,
                        backup_name=unqualified(backup_table),
                        temp=temp_table,
                    ))
                else:
                    logger.warning(f"{original_table} does not exist yet, renaming {temp_table} into place")
                    conn.exec_driver_sql(f"ALTER TABLE {temp_table} RENAME TO {unqualified(original_table)}")
        logger.debug(f"Swapped {temp_table} -> {original_table} (backup: {backup_table})")

    def drop_table(self, table: str):
        """Drop a table, ignoring ORA-00942."""
        with translate_errors(f"Drop table {table}"):
            with self.engine.begin() as conn:
                conn.exec_driver_sql(DROP_IF_EXISTS_BLOCK.format(table=table))

    # =========================================
    # PROCEDURES & AD-HOC QUERIES
    # =========================================

    def execute_procedure(self, name: str, *args: Any) -> int:
        """Call a stored procedure through an anonymous PL/SQL block."""
        placeholders = ", ".join(f":p{i}" for i in range(len(args)))
        call = f"{name}({placeholders})" if args else name
        params = {f"p{i}": value for i, value in enumerate(args)}
        with translate_errors(f"Execute procedure {name}"):
            with self.engine.begin() as conn:
                result = conn.execute(text(f"BEGIN {call}; END;"), params)
                return max(result.rowcount, 0)

    def execute_select(self, query: str, *args: Any) -> List[Record]:
        """
        Run an arbitrary SELECT.

        Args:
            query: SQL using the driver's `:1`, `:2` placeholders
            args: Positional parameters
        """
        with translate_errors("Execute select"):
            with self.engine.connect() as conn:
                df = self._read_frame(conn, query, tuple(args) or None)
        return frame_to_records(df)

    def describe_table(self, table: str) -> TableSchema:
        """
        Describe an existing table from the data dictionary.

        Columns come from all_tab_columns, the primary key from its constraint
        and secondary indexes from all_ind_columns (normal indexes only, the
        one backing the primary key excluded).

        Raises:
            ConnectorError: the table does not exist or the dictionary cannot be read
        """
        parts = split_identifier(table)
        params = {"name": parts[-1].upper()}
        if len(parts) == 2:
            owner = ":owner"
            params["owner"] = parts[0].upper()
        else:
            owner = "SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA')"

        with translate_errors(f"Describe table {table}"):
            with self.engine.connect() as conn:
                columns_df = self._read_frame(conn, text(
                    f"SELECT {DICTIONARY_COLUMNS} FROM all_tab_columns "
                    f"WHERE owner = {owner} AND table_name = :name ORDER BY column_id"
                ), params)
                pk_df = self._read_frame(conn, text(
                    "SELECT cc.column_name FROM all_constraints c "
                    "JOIN all_cons_columns cc ON cc.owner = c.owner AND cc.constraint_name = c.constraint_name "
                    f"WHERE c.owner = {owner} AND c.table_name = :name AND c.constraint_type = 'P' "
                    "ORDER BY cc.position"
                ), params)
                index_df = self._read_frame(conn, text(
                    "SELECT ic.index_name, ic.column_name FROM all_ind_columns ic "
                    "JOIN all_indexes i ON i.owner = ic.index_owner AND i.index_name = ic.index_name "
                    f"WHERE ic.table_owner = {owner} AND ic.table_name = :name AND i.index_type = 'NORMAL' "
                    "AND NOT EXISTS (SELECT 1 FROM all_constraints c WHERE c.owner = i.table_owner "
                    "AND c.index_name = i.index_name AND c.constraint_type = 'P') "
                    "ORDER BY ic.index_name, ic.column_position"
                ), params)

        if columns_df.empty:
            raise ConnectorError(f"Table {table} does not exist or has no columns")

        indexes = []
        if not index_df.empty:
            for _, group in index_df.groupby("INDEX_NAME", sort=False):
                indexes.append(",".join(group["COLUMN_NAME"]))

        return TableSchema(
            columns=columns_from_dictionary(columns_df),
            primary_key=",".join(pk_df["COLUMN_NAME"]) if not pk_df.empty else "",
            indexes=indexes,
            table=table
        )

    def execute_select_with_schema(self, query: str, *args: Any) -> TableSchema:
        """
        Describe a SELECT's result shape through an empty scratch table.

        A result shape has no keys or indexes of its own.
        """
        scratch = f"SHAPE_{uuid.uuid4().hex[:12].upper()}"
        create_stmt = f"CREATE TABLE {scratch} AS SELECT * FROM ({query}) WHERE 1=0"

        with translate_errors("Describe query shape"):
            with self.engine.connect() as conn:
                try:
                    conn.exec_driver_sql(create_stmt, tuple(args) or None)
                    columns_df = self._read_frame(conn, text(
                        f"SELECT {DICTIONARY_COLUMNS} FROM user_tab_columns "
                        "WHERE table_name = :name ORDER BY column_id"
                    ), {"name": scratch})
                finally:
                    conn.exec_driver_sql(DROP_IF_EXISTS_BLOCK.format(table=scratch))
                    conn.commit()

        return TableSchema(columns=columns_from_dictionary(columns_df))
