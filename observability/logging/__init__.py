"""Structured logging for the replication service."""
