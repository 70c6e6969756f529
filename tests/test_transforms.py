"""
Tests for the named transform registry.
"""

import logging

import pytest

from replication import transforms
from replication.transforms import (
    TRANSFORMS,
    get_transform,
    identity,
    register_transform,
    transform_all_imsi,
    transform_model_phones,
)


@pytest.fixture
def registry_snapshot():
    saved = dict(TRANSFORMS)
    yield
    TRANSFORMS.clear()
    TRANSFORMS.update(saved)


def test_model_phones():
    record = {"VENDOR_NAME": "Acme", "MODEL_NAME": "X1", "TAC": "35000000"}

    result = transform_model_phones(record)

    assert result == {"vendorName": "Acme", "modelName": "X1", "tac": "35000000"}
    assert record == {"VENDOR_NAME": "Acme", "MODEL_NAME": "X1", "TAC": "35000000"}


def test_all_imsi():
    record = {
        "CLIENT": "c", "CONTRACT": "k", "ICCID": "i", "IMSI": "m", "MSISDN": "n",
        "STATUS": "s", "TYPESIM": "t", "DEPARTMENT": "d",
    }

    assert transform_all_imsi(record) == {
        "client": "c", "contract": "k", "iccid": "i", "imsi": "m", "msisdn": "n",
        "status": "s", "typeSim": "t", "department": "d",
    }


def test_rename_ignores_absent_and_keeps_unknown_keys():
    assert transform_model_phones({"TAC": "1", "other": 2}) == {"tac": "1", "other": 2}


def test_already_renamed_records_pass_through():
    record = {"vendorName": "Acme", "tac": "1"}

    assert transform_model_phones(record) == record


@pytest.mark.parametrize("name", [None, ""])
def test_empty_name_is_identity(name):
    assert get_transform(name) is identity


def test_lookup_by_name():
    assert get_transform("transformDataModelPhones") is transform_model_phones
    assert get_transform("transformDataAllImsi") is transform_all_imsi


def test_unknown_name_falls_back_to_identity(caplog):
    with caplog.at_level(logging.WARNING, logger=transforms.logger.name):
        func = get_transform("transformDoesNotExist")

    assert func is identity
    assert "transformDoesNotExist" in caplog.text


def test_register_transform(registry_snapshot):
    def tag(record):
        return {**record, "tagged": True}

    register_transform("tag", tag)

    assert get_transform("tag")({"a": 1}) == {"a": 1, "tagged": True}


def test_register_rejects_non_callable(registry_snapshot):
    with pytest.raises(TypeError):
        register_transform("bad", "not a function")
