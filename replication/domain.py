"""
Replication Domain Types
========================

Plain value types shared by connectors, the data processor and the sync service.
"""

from typing import Any, Dict, List, Optional

# One row's worth of column-name-to-value data
Record = Dict[str, Any]


def normalize_column_name(name: str) -> str:
    """Lower-case a column name and strip underscores (VENDOR_NAME == vendorName)."""
    return name.replace("_", "").lower()


class ColumnInfo:
    """Describes one column of a table."""

    def __init__(
        self,
        name: str,
        data_type: str = "",
        is_nullable: bool = True,
        auto_increment: bool = False
    ):
        self.name = name
        self.data_type = data_type
        self.is_nullable = is_nullable
        self.auto_increment = auto_increment

    @property
    def normalized_name(self) -> str:
        return normalize_column_name(self.name)

    @classmethod
    def from_config(cls, config: Dict) -> "ColumnInfo":
        """Build from a `{"name", "dataType", "isNullable", "autoIncrement"}` dict."""
        return cls(
            name=config["name"],
            data_type=config.get("dataType", ""),
            is_nullable=bool(config.get("isNullable", True)),
            auto_increment=bool(config.get("autoIncrement", False))
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, ColumnInfo):
            return NotImplemented
        return (
            self.name == other.name
            and self.data_type == other.data_type
            and self.is_nullable == other.is_nullable
            and self.auto_increment == other.auto_increment
        )

    def __repr__(self) -> str:
        return (
            f"ColumnInfo(name={self.name!r}, data_type={self.data_type!r}, "
            f"is_nullable={self.is_nullable}, auto_increment={self.auto_increment})"
        )


class TableSchema:
    """
    Ordered column definitions plus primary key and index names for one table shape.

    `primary_key` is a column name or a comma-joined composite. It doubles as the
    pagination ordering key, so it must be set before counting or paging a table.
    `table` names the relation the schema was read from, when there is one.
    """

    def __init__(
        self,
        columns: Optional[List[ColumnInfo]] = None,
        primary_key: str = "",
        indexes: Optional[List[str]] = None,
        table: Optional[str] = None
    ):
        self.columns = list(columns or [])
        self.primary_key = primary_key or ""
        self.indexes = list(indexes or [])
        self.table = table

        names = [col.name for col in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate column names in schema: {names}")

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @classmethod
    def from_config(cls, endpoint: Dict, table: Optional[str] = None) -> "TableSchema":
        """Build a schema from an endpoint's explicit column list."""
        return cls(
            columns=[ColumnInfo.from_config(c) for c in endpoint.get("columns", [])],
            primary_key=endpoint.get("primaryKey", ""),
            indexes=endpoint.get("indexes", []),
            table=table
        )

    def __repr__(self) -> str:
        return (
            f"TableSchema(table={self.table!r}, columns={self.column_names}, "
            f"primary_key={self.primary_key!r}, indexes={self.indexes})"
        )
