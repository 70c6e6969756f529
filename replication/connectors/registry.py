"""
Connection Registry
===================

Process-wide registry of named database connectors. Built once at startup and
shared by every sync job that references a source or target by name.
"""

import logging
from typing import Callable, Dict, List, Optional

from ..errors import ConnectorError, DatabaseConnectionError
from .base import DatabaseConnector
from .mariadb_connector import MariaDBConnector
from .oracle_connector import OracleConnector

logger = logging.getLogger(__name__)

CONNECTOR_TYPES: Dict[str, Callable[[Dict], DatabaseConnector]] = {
    "oracle": OracleConnector,
    "mariadb": MariaDBConnector,
}


class ConnectionRegistry:
    """
    Named connectors plus the reasons any configured database is unavailable.

    Each connector owns a thread-safe connection pool, so one entry can serve
    many job threads at once.
    """

    def __init__(self):
        self._connections: Dict[str, DatabaseConnector] = {}
        self._failures: Dict[str, str] = {}

    def register(self, name: str, connector: DatabaseConnector):
        if name in self._connections:
            raise ValueError(f"Connection {name} is already registered")
        self._connections[name] = connector
        self._failures.pop(name, None)

    def mark_failed(self, name: str, reason: str):
        self._failures[name] = reason

    def get(self, name: str) -> DatabaseConnector:
        """
        Look up a connector by configured name.

        Raises:
            DatabaseConnectionError: the name is unknown or failed to connect at startup
        """
        if name in self._connections:
            return self._connections[name]
        if name in self._failures:
            raise DatabaseConnectionError(f"Connection {name} is unavailable: {self._failures[name]}")
        raise DatabaseConnectionError(f"Connection {name} not found")

    def __contains__(self, name: str) -> bool:
        return name in self._connections

    @property
    def names(self) -> List[str]:
        return list(self._connections)

    @property
    def failures(self) -> Dict[str, str]:
        return dict(self._failures)

    def close_all(self):
        """Disconnect every registered connector; errors are logged, not raised."""
        for name, connector in self._connections.items():
            try:
                connector.disconnect()
            except Exception as e:
                logger.error(f"Failed to close connection {name}: {e}")
        self._connections.clear()


def build_registry(
    databases: List[Dict],
    fail_fast: bool = False,
    factories: Optional[Dict[str, Callable[[Dict], DatabaseConnector]]] = None
) -> ConnectionRegistry:
    """
    Connect and ping every configured database.

    Args:
        databases: Database configs, each with `name` and `type` (oracle|mariadb)
        fail_fast: Raise on the first unreachable database instead of recording it
        factories: Connector constructors by type (defaults to CONNECTOR_TYPES)

    Returns:
        Populated registry; unreachable databases are recorded as failures so
        only the jobs that reference them are affected.
    """
    factories = factories or CONNECTOR_TYPES
    registry = ConnectionRegistry()

    for db_config in databases:
        name = db_config["name"]
        db_type = db_config["type"]
        connector = factories[db_type](db_config)
        try:
            connector.connect()
            connector.ping()
        except (ConnectorError, DatabaseConnectionError) as e:
            logger.error(f"✗ Failed to connect to {db_type} {name}: {e}")
            if fail_fast:
                registry.close_all()
                raise DatabaseConnectionError(f"Failed to connect to {db_type} {name}: {e}") from e
            registry.mark_failed(name, str(e))
            continue

        registry.register(name, connector)
        logger.info(f"✓ {db_type} connection {name} successful")

    return registry
