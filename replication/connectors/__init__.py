"""
Replication Connectors
======================

Database connectors implementing the replication connector contract.
"""

from .base import DatabaseConnector
from .mariadb_connector import MariaDBConnector
from .oracle_connector import OracleConnector
from .registry import ConnectionRegistry, build_registry

__all__ = [
    "DatabaseConnector",
    "MariaDBConnector",
    "OracleConnector",
    "ConnectionRegistry",
    "build_registry",
]
