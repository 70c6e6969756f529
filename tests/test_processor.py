"""
Tests for DataProcessor and column mapping.
"""

import logging
import threading

import pytest

from conftest import make_schema
from replication.domain import ColumnInfo, TableSchema, normalize_column_name
from replication.processor import DataProcessor, build_column_mapping
from replication.transforms import transform_model_phones


@pytest.fixture
def processor():
    return DataProcessor(
        buffer_size=10,
        source_schema=make_schema("ID", "VENDOR_NAME", "EXTRA"),
        target_schema=make_schema("id", "vendorName", "created", auto_increment="created"),
    )


class TestColumnMapping:
    def test_normalization(self):
        assert normalize_column_name("VENDOR_NAME") == "vendorname"
        assert normalize_column_name("vendorName") == "vendorname"
        assert normalize_column_name("Vendor_Name_") == "vendorname"

    def test_mapping_by_normalized_name(self, processor):
        assert processor.column_mapping == {"ID": "id", "VENDOR_NAME": "vendorName"}

    def test_first_target_match_wins(self):
        source = make_schema("USER_ID")
        target = make_schema("userId", "user_id")

        assert build_column_mapping(source, target) == {"USER_ID": "userId"}

    def test_no_schemas_no_mapping(self):
        assert DataProcessor().column_mapping == {}


class TestStreaming:
    def test_unmapped_columns_are_dropped(self, processor):
        processor.process([{"ID": 1, "VENDOR_NAME": "Acme", "EXTRA": "x"}])

        assert processor.get_batch(10) == [{"id": 1, "vendorName": "Acme"}]

    def test_output_keys_are_image_of_mapped_input_keys(self, processor):
        # Mapping property: keys(out) == M(keys(in) & domain(M))
        batch = [{"ID": 1}, {"VENDOR_NAME": "v"}, {"EXTRA": 3}, {}]
        processor.process(batch)

        out = processor.get_batch(10)
        for record, processed in zip(batch, out):
            expected = {processor.column_mapping[k] for k in record if k in processor.column_mapping}
            assert set(processed) == expected

    def test_get_batch_drains_in_arrival_order(self, processor):
        processor.process([{"ID": i} for i in range(5)])

        assert [r["id"] for r in processor.get_batch(3)] == [0, 1, 2]
        assert processor.buffer_size() == 2
        assert [r["id"] for r in processor.get_batch(3)] == [3, 4]
        assert processor.get_batch(3) == []

    def test_buffer_over_capacity_warns_but_keeps_records(self, processor, caplog):
        with caplog.at_level(logging.WARNING, logger="replication.processor"):
            processor.process([{"ID": i} for i in range(15)])

        assert processor.buffer_size() == 15
        assert "capacity 10" in caplog.text

    def test_clear(self, processor):
        processor.process([{"ID": 1}])
        processor.clear()

        assert processor.buffer_size() == 0

    def test_transform_applies_after_mapping(self):
        processor = DataProcessor(transform=transform_model_phones)
        processor.process([{"VENDOR_NAME": "Acme", "MODEL_NAME": "X1", "TAC": "1"}])

        assert processor.get_batch(1) == [{"vendorName": "Acme", "modelName": "X1", "tac": "1"}]

    def test_transform_does_not_mutate_input(self):
        record = {"VENDOR_NAME": "Acme"}
        processor = DataProcessor(transform=transform_model_phones)
        processor.process([record])

        assert record == {"VENDOR_NAME": "Acme"}

    def test_concurrent_producers(self, processor):
        def produce(start):
            processor.process([{"ID": i} for i in range(start, start + 100)])

        threads = [threading.Thread(target=produce, args=(n * 100,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        drained = processor.get_batch(1000)
        assert sorted(r["id"] for r in drained) == list(range(400))


class TestPreloaded:
    def test_not_loaded_by_default(self, processor):
        assert processor.has_preloaded_data() is False
        assert processor.get_preloaded_batch(0, 10) == []

    def test_slices_are_mapped_lazily(self, processor):
        processor.set_source_data([{"ID": i, "EXTRA": i} for i in range(5)])

        assert processor.preloaded_count() == 5
        assert processor.get_preloaded_batch(3, 10) == [{"id": 3}, {"id": 4}]
        assert processor.get_preloaded_batch(5, 10) == []

    def test_slices_can_be_reread(self, processor):
        data = [{"ID": i, "VENDOR_NAME": "v"} for i in range(4)]
        processor.set_source_data(data)

        first = processor.get_preloaded_batch(0, 2)
        second = processor.get_preloaded_batch(0, 2)

        assert first == second
        assert data[0] == {"ID": 0, "VENDOR_NAME": "v"}

    def test_empty_result_counts_as_loaded(self, processor):
        processor.set_source_data([])

        assert processor.has_preloaded_data() is True
        assert processor.preloaded_count() == 0

    def test_preloaded_set_survives_mutating_transform(self):
        def mutate(record):
            record["seen"] = True
            return record

        processor = DataProcessor(transform=mutate)
        processor.set_source_data([{"a": 1}])
        processor.get_preloaded_batch(0, 1)

        assert processor.get_preloaded_batch(0, 1) == [{"a": 1, "seen": True}]
        assert processor._source_data == [{"a": 1}]


def test_target_columns_skip_autoincrement(processor):
    assert processor.get_target_columns() == ["id", "vendorName"]


def test_duplicate_schema_columns_rejected():
    with pytest.raises(ValueError):
        TableSchema([ColumnInfo("a"), ColumnInfo("a")])
