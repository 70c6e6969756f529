"""
Transform Functions
===================

Registry of named record transforms. A sync job picks its transform once, by the
`transform_function` name in its configuration; unknown or empty names fall back
to the identity transform.
"""

import logging
from typing import Callable, Dict

from .domain import Record

logger = logging.getLogger(__name__)

RecordTransform = Callable[[Record], Record]


def identity(record: Record) -> Record:
    return record


def rename_keys(record: Record, renames: Dict[str, str]) -> Record:
    """Return a copy of `record` with keys renamed per `renames`."""
    result = dict(record)
    for source, target in renames.items():
        if source in result:
            result[target] = result.pop(source)
    return result


MODEL_PHONES_RENAMES = {
    "VENDOR_NAME": "vendorName",
    "MODEL_NAME": "modelName",
    "TAC": "tac",
}

ALL_IMSI_RENAMES = {
    "CLIENT": "client",
    "CONTRACT": "contract",
    "ICCID": "iccid",
    "IMSI": "imsi",
    "MSISDN": "msisdn",
    "STATUS": "status",
    "TYPESIM": "typeSim",
    "DEPARTMENT": "department",
}


def transform_model_phones(record: Record) -> Record:
    """Phone model catalogue: Oracle upper-case columns -> MariaDB camelCase."""
    return rename_keys(record, MODEL_PHONES_RENAMES)


def transform_all_imsi(record: Record) -> Record:
    """SIM inventory: Oracle upper-case columns -> MariaDB camelCase."""
    return rename_keys(record, ALL_IMSI_RENAMES)


TRANSFORMS: Dict[str, RecordTransform] = {
    "identity": identity,
    "transformDataModelPhones": transform_model_phones,
    "transformDataAllImsi": transform_all_imsi,
}


def register_transform(name: str, func: RecordTransform):
    """Add a named transform to the registry."""
    if not callable(func):
        raise TypeError(f"Transform {name} must be callable")
    TRANSFORMS[name] = func


def get_transform(name: str = None) -> RecordTransform:
    """
    Look up a transform by name.

    Args:
        name: Registry key; empty or None selects identity

    Returns:
        The transform, or identity when the name is not registered
    """
    if not name:
        return identity
    func = TRANSFORMS.get(name)
    if func is None:
        logger.warning(f"Transform function {name} is not registered, using identity")
        return identity
    return func
