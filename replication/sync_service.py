"""
Sync Service
============

One replication job: a source/target connector pair and one table (or query)
mapping. Each cycle rebuilds the target table from scratch:

1. create `<target><suffix>` shaped like the target schema
2. extract the source in batches (or replay a preloaded query result)
3. map/transform each batch and insert it into the temp table
4. swap the temp table in for the live table (one backup generation kept)
5. drop the vacated temp table name
6. run the configured post-cycle procedures

The live table is only ever touched by step 4, so a cycle that fails earlier
leaves it exactly as it was.
"""

import time
from datetime import datetime
from typing import Dict, List, Optional

from observability.logging.structured_logger import StructuredLogger, get_logger, new_trace_id

from .config import JobConfig
from .connectors.base import DatabaseConnector
from .connectors.registry import ConnectionRegistry
from .domain import Record, TableSchema
from .errors import (
    CleanupError,
    DatabaseConnectionError,
    ExtractionError,
    InsertionError,
    ProcedureError,
    ReplicationError,
    SchemaResolutionError,
    SwapError,
)
from .processor import DataProcessor
from .transforms import RecordTransform, get_transform


class SyncService:
    """
    Replication job for one source/target table pair.

    Schemas are resolved once, at construction, and cached for every cycle.
    """

    def __init__(
        self,
        source: DatabaseConnector,
        target: DatabaseConnector,
        config: JobConfig,
        transform: Optional[RecordTransform] = None,
        logger: Optional[StructuredLogger] = None
    ):
        """
        Initialize the job and resolve its schemas.

        Args:
            source: Connector the data is read from
            target: Connector the data is written to
            config: Job settings
            transform: Record transform; defaults to the registry entry named
                by `config.transform_function`
            logger: Structured logger (defaults to `replication.sync`)

        Raises:
            SchemaResolutionError: source or target shape cannot be resolved
            ExtractionError: an ad-hoc source query cannot be preloaded
        """
        self.source = source
        self.target = target
        self.config = config
        self.name = config.name
        self.logger = logger or get_logger("replication.sync")

        preloaded: Optional[List[Record]] = None
        self.source_schema = self._resolve_source_schema()
        if config.source.query:
            preloaded = self._preload_source_query()
        self.target_schema = self._resolve_target_schema()

        self.processor = DataProcessor(
            buffer_size=config.buffer_size,
            source_schema=self.source_schema,
            target_schema=self.target_schema,
            transform=transform or get_transform(config.transform_function),
        )
        if preloaded is not None:
            self.processor.set_source_data(preloaded)

        unmapped = [c for c in self.source_schema.column_names if c not in self.processor.column_mapping]
        if unmapped:
            self.logger.debug(f"Source columns without a target match (dropped): {unmapped}")

    @classmethod
    def from_registry(
        cls,
        registry: ConnectionRegistry,
        config: JobConfig,
        logger: Optional[StructuredLogger] = None
    ) -> "SyncService":
        """
        Build a job from named connections, checking both are reachable.

        Raises:
            DatabaseConnectionError: a connection is unknown, failed at startup, or does not answer
        """
        source = registry.get(config.source_db)
        target = registry.get(config.target_db)
        for name, connector in ((config.source_db, source), (config.target_db, target)):
            try:
                connector.ping()
            except Exception as e:
                raise DatabaseConnectionError(f"Failed to ping {name}: {e}") from e
        return cls(source, target, config, logger=logger)

    # =========================================
    # SCHEMA RESOLUTION
    # =========================================

    def _resolve_source_schema(self) -> TableSchema:
        endpoint = self.config.source
        schema = endpoint.explicit_schema()

        if schema is None:
            try:
                if endpoint.table:
                    schema = self.source.describe_table(endpoint.table)
                else:
                    schema = self.source.execute_select_with_schema(endpoint.query)
            except Exception as e:
                raise SchemaResolutionError(f"Failed to get source schema for {endpoint.label}: {e}") from e

        if not schema.columns:
            raise SchemaResolutionError(f"Source {endpoint.label} has no columns")

        if endpoint.table:
            schema.table = endpoint.table
            if not schema.primary_key:
                if endpoint.primary_key:
                    schema.primary_key = endpoint.primary_key
                else:
                    schema.primary_key = schema.columns[0].name
                    self.logger.warning(
                        f"No primary key known for {endpoint.table}, paging by {schema.primary_key}"
                    )
        return schema

    def _preload_source_query(self) -> List[Record]:
        try:
            data = self.source.execute_select(self.config.source.query)
        except Exception as e:
            raise ExtractionError(f"Failed to get source data from query: {e}") from e
        self.logger.debug(f"Preloaded {len(data)} records from source query")
        return data

    def _resolve_target_schema(self) -> TableSchema:
        endpoint = self.config.target
        schema = endpoint.explicit_schema()
        errors = []

        if schema is None:
            try:
                schema = self.target.describe_table(endpoint.table)
            except Exception as e:
                errors.append(f"table {endpoint.table}: {e}")

        if schema is None and endpoint.query:
            try:
                schema = self.target.execute_select_with_schema(endpoint.query)
            except Exception as e:
                errors.append(f"query: {e}")

        if schema is None:
            raise SchemaResolutionError(f"Failed to get target schema: {'; '.join(errors)}")
        if not schema.columns:
            raise SchemaResolutionError(f"Target {endpoint.table} has no columns")

        schema.table = endpoint.table
        if not schema.primary_key and endpoint.primary_key:
            schema.primary_key = endpoint.primary_key
        if not schema.indexes and endpoint.indexes:
            schema.indexes = list(endpoint.indexes)
        return schema

    # =========================================
    # CYCLE
    # =========================================

    def _insert(self, temp_table: str, batch: List[Record]):
        try:
            self.target.insert_batch(temp_table, batch, self.processor.get_target_columns())
        except Exception as e:
            raise InsertionError(f"Insert batch failed: {e}") from e

    def _process_preloaded(self, temp_table: str, result: Dict):
        total = self.processor.preloaded_count()
        result["total_rows"] = total
        self.logger.debug(f"Using preloaded data, count: {total}")

        batch_size = self.config.batch_size
        for offset in range(0, total, batch_size):
            try:
                processed = self.processor.get_preloaded_batch(offset, batch_size)
            except Exception as e:
                raise ExtractionError(f"Processing preloaded batch at offset {offset} failed: {e}") from e
            if not processed:
                break
            result["rows_extracted"] += len(processed)

            self._insert(temp_table, processed)
            result["rows_loaded"] += len(processed)
            self.logger.log_batch_progress(self.name, offset + len(processed), total)

    def _process_table(self, temp_table: str, result: Dict):
        table = self.config.source.table
        try:
            total = self.source.get_count(self.source_schema)
        except Exception as e:
            raise ExtractionError(f"Count of {table} failed: {e}") from e
        result["total_rows"] = total
        self.logger.debug(f"Total rows count: {total}")

        batch_size = self.config.batch_size
        offset = 0
        while offset < total:
            self.logger.debug(f"Processing offset: {offset}")
            try:
                batch = self.source.get_batch(table, offset, batch_size, self.source_schema)
            except Exception as e:
                raise ExtractionError(f"Read batch from {table} at offset {offset} failed: {e}") from e
            result["rows_extracted"] += len(batch)

            try:
                self.processor.process(batch)
            except Exception as e:
                raise ExtractionError(f"Processing batch at offset {offset} failed: {e}") from e

            # The last batch of a cycle may be short; insert exactly what was processed
            processed = self.processor.get_batch(batch_size)
            if not processed:
                break
            self.logger.debug(f"Processed batch size: {len(processed)}")

            self._insert(temp_table, processed)
            result["rows_loaded"] += len(processed)
            self.logger.log_batch_progress(self.name, min(offset + len(batch), total), total)

            if len(batch) < batch_size:
                break
            offset += batch_size

    def _process_data(self, temp_table: str, result: Dict):
        self.processor.clear()
        if self.processor.has_preloaded_data():
            self._process_preloaded(temp_table, result)
        else:
            self._process_table(temp_table, result)

    def _drop_temp_table(self, temp_table: str) -> Optional[str]:
        try:
            self.target.drop_table(temp_table)
        except Exception as e:
            error = CleanupError(f"Failed to drop temp table {temp_table}: {e}")
            self.logger.error(str(error), exception=e)
            return str(error)
        return None

    def _run_procedures(self, result: Dict):
        for proc in self.config.post_procedures:
            outcome = {"procedure": proc.name, "status": "success", "affected": 0, "error": None}
            try:
                outcome["affected"] = self.target.execute_procedure(proc.name, *proc.params)
                self.logger.info(f"Procedure {proc.name} processed: {outcome['affected']}")
            except Exception as e:
                error = ProcedureError(f"Failed to exec procedure {proc.name}: {e}")
                outcome["status"] = "failed"
                outcome["error"] = str(error)
                self.logger.error(str(error), exception=e)
            result["procedures"].append(outcome)

    def _run_cycle(self, result: Dict):
        original_table = self.config.target.table
        temp_table = self.config.temp_table

        # 1. Staging table
        result["stage"] = "create_temp_table"
        try:
            self.target.create_temp_table(original_table, temp_table, self.target_schema)
        except Exception as e:
            raise InsertionError(f"Create temp table {temp_table} failed: {e}") from e

        # 2-3. Extract, transform, load into the staging table
        result["stage"] = "populate"
        try:
            self._process_data(temp_table, result)
        except ReplicationError:
            result["cleanup_error"] = self._drop_temp_table(temp_table)
            raise

        # 4. Swap; on failure the temp table is left for inspection
        result["stage"] = "swap"
        try:
            self.target.swap_tables(original_table, temp_table)
        except Exception as e:
            raise SwapError(
                f"Table swap {temp_table} -> {original_table} failed, "
                f"{temp_table} left in place for inspection: {e}"
            ) from e

        # 5. Drop the name vacated by the rename
        result["stage"] = "cleanup"
        result["cleanup_error"] = self._drop_temp_table(temp_table)

        # 6. Post-cycle procedures
        result["stage"] = "procedures"
        self._run_procedures(result)
        result["stage"] = "done"

    def sync_tables(self) -> Dict:
        """
        Run one full create -> populate -> swap -> cleanup cycle.

        Cycle failures are logged and reported in the result, never raised.

        Returns:
            Result dictionary with status and metrics
        """
        cycle_id = new_trace_id()
        result = {
            "job": self.name,
            "cycle_id": cycle_id,
            "source_table": self.config.source.label,
            "target_table": self.config.target.table,
            "status": "pending",
            "stage": None,
            "total_rows": 0,
            "rows_extracted": 0,
            "rows_loaded": 0,
            "procedures": [],
            "cleanup_error": None,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "duration_seconds": 0.0,
            "error": None
        }
        started = time.monotonic()

        with self.logger.context(job=self.name, cycle_id=cycle_id):
            self.logger.log_cycle_start(self.name, cycle_id)
            try:
                self._run_cycle(result)
                result["status"] = "success"
            except ReplicationError as e:
                result["status"] = "failed"
                result["error"] = str(e)
                self.logger.error(
                    f"Sync failed: {e}",
                    extra={"error_type": type(e).__name__, "stage": result["stage"]},
                    exception=e
                )

            result["end_time"] = datetime.now().isoformat()
            result["duration_seconds"] = round(time.monotonic() - started, 3)
            self.logger.log_cycle_end(
                self.name, cycle_id, result["status"], result["duration_seconds"], result["rows_loaded"]
            )

        return result
