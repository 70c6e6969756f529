#!/usr/bin/env python3
"""
Replication Runner
==================

CLI entry point for the table replication service.

Usage:
    python -m replication.run_replication run     # Run all sync jobs until SIGINT/SIGTERM
    python -m replication.run_replication once    # Run one cycle per job and exit
    python -m replication.run_replication test    # Test database connections only
"""

import argparse
import sys
from typing import Optional

from observability.logging.structured_logger import configure_logging, get_logger

from .config import AppConfig, load_config
from .connectors.registry import build_registry
from .errors import ReplicationError
from .scheduler import SyncScheduler, create_sync_services

logger = get_logger("replication.main")


def _load(config_path: Optional[str], log_level: Optional[str]) -> AppConfig:
    config = load_config(config_path)
    settings = dict(config.logger_settings)
    if log_level:
        settings["level"] = log_level
    configure_logging(settings)
    return config


def test_connections(config: AppConfig) -> bool:
    """Connect and ping every configured database."""
    print("=" * 60)
    print("TESTING CONNECTIONS")
    print("=" * 60)

    registry = build_registry(config.databases)
    try:
        for db in config.databases:
            name = db["name"]
            if name in registry:
                print(f"\n✓ {db['type']} {name} ({db['host']})")
            else:
                print(f"\n✗ {db['type']} {name}: {registry.failures.get(name)}")
    finally:
        registry.close_all()

    if registry.failures:
        return False
    print("\n✓ All connections successful!")
    return True


def run_once(config: AppConfig) -> bool:
    """Run exactly one cycle per job, sequentially, and print a summary."""
    print("=" * 60)
    print("SINGLE SYNC CYCLE")
    print("=" * 60)

    registry = build_registry(config.databases, fail_fast=config.fail_fast)
    try:
        services = create_sync_services(config, registry, logger)
        results = [service.sync_tables() for service in services]
    finally:
        registry.close_all()

    print("\n" + "=" * 60)
    print("RESULTS SUMMARY")
    print("=" * 60)
    for result in results:
        status_icon = "✓" if result["status"] == "success" else "✗"
        print(f"\n{status_icon} {result['source_table']} -> {result['target_table']}")
        print(f"    Status: {result['status']}")
        print(f"    Rows extracted: {result['rows_extracted']:,}")
        print(f"    Rows loaded: {result['rows_loaded']:,}")
        print(f"    Duration: {result['duration_seconds']}s")
        for proc in result["procedures"]:
            print(f"    Procedure {proc['procedure']}: {proc['status']}")
        if result.get("cleanup_error"):
            print(f"    Cleanup: {result['cleanup_error']}")
        if result.get("error"):
            print(f"    Error: {result['error']}")

    skipped = len(config.jobs) - len(services)
    if skipped:
        print(f"\n✗ {skipped} job(s) could not be started")
    return skipped == 0 and all(r["status"] == "success" for r in results)


def run_service(config: AppConfig) -> bool:
    """Start every job on its own schedule and block until shutdown."""
    logger.info("Application started")
    registry = build_registry(config.databases, fail_fast=config.fail_fast)
    try:
        services = create_sync_services(config, registry, logger)
        if not services:
            logger.critical("No sync job could be started")
            return False
        scheduler = SyncScheduler(services, shutdown_timeout=config.shutdown_timeout, logger=logger)
        clean = scheduler.run_forever()
    finally:
        registry.close_all()
    logger.info("Application stopped")
    return clean


def main(argv=None):
    parser = argparse.ArgumentParser(description="Table Replication Service")
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "once", "test"],
        help="Command to run (default: run)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the task settings JSON (default: $REPLICATION_CONFIG or the bundled file)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level"
    )

    args = parser.parse_args(argv)

    try:
        config = _load(args.config, args.log_level)
        if args.command == "test":
            success = test_connections(config)
        elif args.command == "once":
            success = run_once(config)
        else:
            success = run_service(config)
    except ReplicationError as e:
        logger.critical(f"Startup failed: {e}", exception=e)
        print(f"\n✗ {type(e).__name__}: {e}", file=sys.stderr)
        success = False

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
