"""
Replication Errors
==================

Error taxonomy for the replication engine.

Bootstrap errors (connection, schema resolution) are fatal to one job's creation.
Cycle errors (extraction, insertion, swap) fail one cycle; the schedule retries.
Cleanup and procedure errors are logged and never fail a cycle.
"""


class ReplicationError(Exception):
    """Base class for all replication errors."""


class ConfigError(ReplicationError):
    """Configuration file is missing, malformed or inconsistent."""


class ConnectorError(ReplicationError):
    """A connector operation failed against its database."""


class DatabaseConnectionError(ReplicationError):
    """A connector cannot connect or ping, or a named connection is unavailable."""


class SchemaResolutionError(ReplicationError):
    """Source or target table shape could not be resolved."""


class ExtractionError(ReplicationError):
    """Reading a batch (or the row count) from the source failed."""


class InsertionError(ReplicationError):
    """Writing a batch into the temp table failed."""


class SwapError(ReplicationError):
    """Renaming the temp table over the live table failed."""


class CleanupError(ReplicationError):
    """Dropping the vacated temp table after a swap failed."""


class ProcedureError(ReplicationError):
    """A post-cycle procedure failed."""
