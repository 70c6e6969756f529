"""
Data Processor
==============

Turns raw source records into target-shaped records.

Two modes:
- Streaming: `process()` maps each extracted batch into an internal buffer,
  `get_batch()` drains it in arrival order.
- Preloaded: an ad-hoc query's full result set is held unchanged and
  `get_preloaded_batch()` maps a slice of it on demand.
"""

import logging
import threading
from collections import deque
from typing import Dict, List, Optional

from .domain import Record, TableSchema
from .transforms import RecordTransform, identity

logger = logging.getLogger(__name__)


def build_column_mapping(source_schema: TableSchema, target_schema: TableSchema) -> Dict[str, str]:
    """
    Pair each source column with the first target column of equal normalised name.

    Args:
        source_schema: Source table shape
        target_schema: Target table shape

    Returns:
        Dict of source column name -> target column name; unmatched source
        columns are absent
    """
    mapping = {}
    for src_col in source_schema.columns:
        for tgt_col in target_schema.columns:
            if src_col.normalized_name == tgt_col.normalized_name:
                mapping[src_col.name] = tgt_col.name
                break
    return mapping


class DataProcessor:
    """
    Maps, transforms and buffers records between extraction and insertion.

    The buffer and the preloaded data are guarded by one lock, so a producer
    calling `process()` and a consumer calling `get_batch()` may run on
    different threads.
    """

    def __init__(
        self,
        buffer_size: int = 5000,
        source_schema: Optional[TableSchema] = None,
        target_schema: Optional[TableSchema] = None,
        transform: Optional[RecordTransform] = None
    ):
        """
        Args:
            buffer_size: Soft capacity of the streaming buffer; exceeding it is
                logged, records are never dropped
            source_schema: Source shape; without it records skip column mapping
            target_schema: Target shape used for the mapping and insert columns
            transform: Record transform applied after mapping (identity by default)
        """
        self.buffer_capacity = buffer_size
        self.source_schema = source_schema
        self.target_schema = target_schema
        self.transform = transform or identity

        self._lock = threading.Lock()
        self._buffer = deque()
        self._source_data: List[Record] = []
        self._data_loaded = False

        self.column_mapping: Dict[str, str] = {}
        if source_schema is not None and target_schema is not None:
            self.column_mapping = build_column_mapping(source_schema, target_schema)

    # =========================================
    # RECORD MAPPING
    # =========================================

    def _process_record(self, record: Record) -> Record:
        if self.source_schema is None:
            return self.transform(dict(record))

        processed = {}
        folded = None
        for col in self.source_schema.columns:
            target_name = self.column_mapping.get(col.name)
            if target_name is None:
                continue

            if col.name in record:
                value = record[col.name]
            else:
                # Drivers may report case-insensitive names in another case
                if folded is None:
                    folded = {key.lower(): key for key in record}
                key = folded.get(col.name.lower())
                if key is None:
                    continue
                value = record[key]

            processed[target_name] = value

        return self.transform(processed)

    # =========================================
    # STREAMING MODE
    # =========================================

    def process(self, batch: List[Record]):
        """Map, transform and buffer one extracted batch."""
        with self._lock:
            for record in batch:
                processed = self._process_record(record)
                if processed is not None:
                    self._buffer.append(processed)
            if len(self._buffer) > self.buffer_capacity:
                logger.warning(
                    f"Processor buffer holds {len(self._buffer)} records "
                    f"(capacity {self.buffer_capacity})"
                )

    def get_batch(self, size: int) -> List[Record]:
        """Drain up to `size` buffered records in arrival order."""
        with self._lock:
            count = min(size, len(self._buffer))
            return [self._buffer.popleft() for _ in range(count)]

    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def clear(self):
        """Discard anything left in the streaming buffer."""
        with self._lock:
            self._buffer.clear()

    # =========================================
    # PRELOADED MODE
    # =========================================

    def set_source_data(self, data: List[Record]):
        """Hold a query's full result set for replay; an empty result still counts as loaded."""
        with self._lock:
            self._source_data = list(data)
            self._data_loaded = True

    def has_preloaded_data(self) -> bool:
        with self._lock:
            return self._data_loaded

    def preloaded_count(self) -> int:
        with self._lock:
            return len(self._source_data)

    def get_preloaded_batch(self, offset: int, size: int) -> List[Record]:
        """
        Map and transform a slice of the preloaded records.

        The preloaded set itself is never modified, so a slice can be re-read.
        """
        with self._lock:
            if not self._data_loaded or offset >= len(self._source_data):
                return []
            batch = []
            for record in self._source_data[offset:offset + size]:
                processed = self._process_record(record)
                if processed is not None:
                    batch.append(processed)
            return batch

    # =========================================
    # TARGET COLUMNS
    # =========================================

    def get_target_columns(self) -> List[str]:
        """Target columns to insert explicitly: all non-autoincrement columns in schema order."""
        if self.target_schema is None:
            return []
        return [col.name for col in self.target_schema.columns if not col.auto_increment]
