"""
Replication Configuration
=========================

Loads and validates the JSON task settings:

- `logger`: level, JSON formatting, optional log file and PostgreSQL sink
- `startup`: fail-fast connection policy, shutdown grace period
- `oracle` / `mariadb`: named database connections
- `sync`: sync groups, each expanding into one job per configured table

Per-table entries inherit the group's batch size, temp table suffix, buffer
size, interval and post-cycle procedures unless they override them.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .domain import TableSchema
from .errors import ConfigError

logger = logging.getLogger(__name__)

DB_TYPES = ("oracle", "mariadb")

DEFAULT_BATCH_SIZE = 1000
DEFAULT_TEMP_TABLE_SUFFIX = "_temp"
DEFAULT_BUFFER_SIZE = 5000
DEFAULT_SYNC_INTERVAL = "5m"
DEFAULT_SHUTDOWN_TIMEOUT = "30s"

CONFIG_ENV_VAR = "REPLICATION_CONFIG"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style strings such as "250ms", "90s",
    "5m" or "1h30m".
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if not text:
            raise ConfigError("Invalid duration: empty string")
        if re.fullmatch(r"\d+(?:\.\d+)?", text):
            seconds = float(text)
        else:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ConfigError(f"Invalid duration: {value!r}")
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    else:
        raise ConfigError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise ConfigError(f"Duration must be positive: {value!r}")
    return seconds


class ProcedureConfig:
    """A post-cycle stored procedure call."""

    def __init__(self, name: str, params: Optional[List[Any]] = None):
        self.name = name
        self.params = list(params or [])

    @classmethod
    def from_dict(cls, data: Dict) -> "ProcedureConfig":
        name = data.get("procedure_name")
        if not name:
            raise ConfigError("post_procedure_list entries need a procedure_name")
        return cls(name, data.get("procedure_params"))

    def __repr__(self) -> str:
        return f"ProcedureConfig({self.name!r}, {self.params!r})"


class EndpointConfig:
    """Source or target side of a job: a table or a query, plus an optional explicit shape."""

    def __init__(
        self,
        table: str = "",
        query: str = "",
        columns: Optional[List[Dict]] = None,
        primary_key: str = "",
        indexes: Optional[List[str]] = None
    ):
        self.table = table or ""
        self.query = query or ""
        self.columns = list(columns or [])
        self.primary_key = primary_key or ""
        self.indexes = list(indexes or [])

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "EndpointConfig":
        data = data or {}
        names = []
        for col in data.get("columns", []):
            if not col.get("name"):
                raise ConfigError(f"Column definition without a name: {col}")
            if col["name"] in names:
                raise ConfigError(f"Duplicate column name {col['name']!r} in {data.get('table') or 'query'} columns")
            names.append(col["name"])
        return cls(
            table=data.get("table", ""),
            query=data.get("query", ""),
            columns=data.get("columns"),
            primary_key=data.get("primaryKey", ""),
            indexes=data.get("indexes"),
        )

    def explicit_schema(self) -> Optional[TableSchema]:
        """Schema from the configured column list, or None when no columns are configured."""
        if not self.columns:
            return None
        return TableSchema.from_config(
            {"columns": self.columns, "primaryKey": self.primary_key, "indexes": self.indexes},
            table=self.table or None
        )

    @property
    def label(self) -> str:
        return self.table or "<query>"


class JobConfig:
    """Fully resolved settings of one sync job (one table or query pair)."""

    def __init__(
        self,
        source_db: str,
        target_db: str,
        source: EndpointConfig,
        target: EndpointConfig,
        source_type: str = "",
        target_type: str = "",
        transform_function: str = "",
        description: str = "",
        batch_size: int = DEFAULT_BATCH_SIZE,
        temp_table_suffix: str = DEFAULT_TEMP_TABLE_SUFFIX,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        sync_interval: float = 300.0,
        post_procedures: Optional[List[ProcedureConfig]] = None
    ):
        self.source_db = source_db
        self.target_db = target_db
        self.source = source
        self.target = target
        self.source_type = source_type
        self.target_type = target_type
        self.transform_function = transform_function
        self.description = description
        self.batch_size = batch_size
        self.temp_table_suffix = temp_table_suffix
        self.buffer_size = buffer_size
        self.sync_interval = sync_interval
        self.post_procedures = list(post_procedures or [])

    @property
    def name(self) -> str:
        return f"{self.source_db}.{self.source.label}->{self.target_db}.{self.target.table}"

    @property
    def temp_table(self) -> str:
        return self.target.table + self.temp_table_suffix

    def validate(self):
        if self.source_type and self.source_type not in DB_TYPES:
            raise ConfigError(f"source_type must be one of {DB_TYPES}, got {self.source_type!r}")
        if self.target_type and self.target_type not in DB_TYPES:
            raise ConfigError(f"target_type must be one of {DB_TYPES}, got {self.target_type!r}")
        if not self.source_db:
            raise ConfigError("source_db cannot be empty")
        if not self.target_db:
            raise ConfigError("target_db cannot be empty")

        if not self.source.table and not self.source.query:
            raise ConfigError("source must have either table or query")
        if self.source.table and self.source.query:
            raise ConfigError("source cannot have both table and query")
        if not self.target.table:
            raise ConfigError("target must name the table to replace")

        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.buffer_size <= 0:
            raise ConfigError(f"buffer_size must be positive, got {self.buffer_size}")
        if not self.temp_table_suffix:
            raise ConfigError("temp_table_suffix cannot be empty")

    def __repr__(self) -> str:
        return f"JobConfig({self.name})"


class AppConfig:
    """Whole-process settings: logging, startup policy, databases and jobs."""

    def __init__(
        self,
        databases: List[Dict],
        jobs: List[JobConfig],
        logger_settings: Optional[Dict] = None,
        fail_fast: bool = False,
        shutdown_timeout: float = 30.0
    ):
        self.databases = databases
        self.jobs = jobs
        self.logger_settings = logger_settings or {}
        self.fail_fast = fail_fast
        self.shutdown_timeout = shutdown_timeout

    def find_database(self, name: str) -> Optional[Dict]:
        for db in self.databases:
            if db["name"] == name:
                return db
        return None


def _int_setting(settings: Dict, key: str, default: int) -> int:
    value = settings.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    return value


def _procedures(raw: Optional[List[Dict]]) -> List[ProcedureConfig]:
    return [ProcedureConfig.from_dict(p) for p in raw or []]


def build_jobs(sync_groups: List[Dict]) -> List[JobConfig]:
    """
    Expand sync groups into per-table job configs.

    A group with `tables` yields one job per entry; per-table settings override
    the group's. A group without `tables` is a single job over its own
    `source`/`target`.
    """
    jobs = []
    for group in sync_groups:
        base = {
            "source_db": group.get("source_db", ""),
            "target_db": group.get("target_db", ""),
            "source_type": group.get("source_type", ""),
            "target_type": group.get("target_type", ""),
            "transform_function": group.get("transform_function", ""),
            "description": group.get("description", ""),
            "batch_size": _int_setting(group, "batch_size", DEFAULT_BATCH_SIZE),
            "temp_table_suffix": group.get("temp_table_suffix") or DEFAULT_TEMP_TABLE_SUFFIX,
            "buffer_size": _int_setting(group, "buffer_size", DEFAULT_BUFFER_SIZE),
            "sync_interval": parse_duration(group.get("sync_interval", DEFAULT_SYNC_INTERVAL)),
            "post_procedures": _procedures(group.get("post_procedure_list")),
        }

        tables = group.get("tables") or []
        if not tables:
            job = JobConfig(
                source=EndpointConfig.from_dict(group.get("source")),
                target=EndpointConfig.from_dict(group.get("target")),
                **base
            )
            job.validate()
            jobs.append(job)
            continue

        for table in tables:
            settings = dict(base)
            if table.get("batch_size") is not None:
                settings["batch_size"] = _int_setting(table, "batch_size", base["batch_size"])
            if table.get("temp_table_suffix"):
                settings["temp_table_suffix"] = table["temp_table_suffix"]
            if table.get("buffer_size") is not None:
                settings["buffer_size"] = _int_setting(table, "buffer_size", base["buffer_size"])
            if table.get("sync_interval") is not None:
                settings["sync_interval"] = parse_duration(table["sync_interval"])
            if table.get("post_procedure_list"):
                settings["post_procedures"] = _procedures(table["post_procedure_list"])
            if table.get("transform_function"):
                settings["transform_function"] = table["transform_function"]

            job = JobConfig(
                source=EndpointConfig.from_dict(table.get("source")),
                target=EndpointConfig.from_dict(table.get("target")),
                **settings
            )
            job.validate()
            jobs.append(job)

    return jobs


def _databases(raw: Dict) -> List[Dict]:
    databases = []
    seen = set()
    for db_type in DB_TYPES:
        for db in raw.get(db_type) or []:
            name = db.get("name")
            if not name:
                raise ConfigError(f"{db_type} database entry without a name")
            if name in seen:
                raise ConfigError(f"Duplicate database name: {name}")
            for key in ("host", "user", "dbname"):
                if not db.get(key):
                    raise ConfigError(f"Database {name} is missing {key}")
            seen.add(name)
            databases.append({**db, "type": db_type})
    return databases


def parse_config(raw: Dict) -> AppConfig:
    """
    Build an AppConfig from an already-decoded settings dict.

    Raises:
        ConfigError: settings are inconsistent
    """
    databases = _databases(raw)
    jobs = build_jobs(raw.get("sync") or [])

    db_types = {db["name"]: db["type"] for db in databases}
    targets = set()
    for job in jobs:
        for role, name, declared in (
            ("source", job.source_db, job.source_type),
            ("target", job.target_db, job.target_type),
        ):
            actual = db_types.get(name)
            if actual and declared and actual != declared:
                raise ConfigError(f"{role}_db {name} is a {actual} database, not {declared}")

        key = (job.target_db, job.target.table.lower())
        if key in targets:
            raise ConfigError(f"Several jobs replace {job.target.table} on {job.target_db}")
        targets.add(key)

    startup = raw.get("startup") or {}
    return AppConfig(
        databases=databases,
        jobs=jobs,
        logger_settings=raw.get("logger") or {},
        fail_fast=bool(startup.get("fail_fast", False)),
        shutdown_timeout=parse_duration(startup.get("shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT)),
    )


def get_default_config_path() -> str:
    """Config file from REPLICATION_CONFIG, else the bundled configs/task_settings.json."""
    return os.environ.get(CONFIG_ENV_VAR) or str(Path(__file__).parent / "configs" / "task_settings.json")


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load and validate the settings file.

    Args:
        config_path: Path to the JSON settings file (defaults to get_default_config_path())

    Raises:
        ConfigError: file is missing, not valid JSON, or inconsistent
    """
    config_path = config_path or get_default_config_path()
    try:
        with open(config_path, 'r') as f:
            raw = json.load(f)
    except OSError as e:
        raise ConfigError(f"Error opening config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error decoding {config_path}: {e}") from e

    config = parse_config(raw)
    logger.info(f"Loaded {len(config.jobs)} sync jobs and {len(config.databases)} databases from {config_path}")
    return config
