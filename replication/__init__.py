"""
Table Replication Service
=========================

Periodically replicates source tables (or ad-hoc query results) between
Oracle and MariaDB databases:

- Full refresh every cycle: create temp table, populate in batches, swap, clean up
- Zero-downtime cutover through an atomic table swap
- One independently scheduled job per table, with bounded graceful shutdown

Data is mapped onto the target columns by normalized name and optionally
reshaped by a named transform function.
"""

__version__ = "1.0.0"
