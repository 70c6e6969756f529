"""
Sync Scheduler
==============

Runs every sync job on its own thread: one cycle immediately, then one per
fixed interval until shutdown is requested.

- Cycles of one job never overlap: the next starts only after the previous
  (including swap and cleanup) returned.
- Ticks missed while a cycle overran are coalesced into a single immediate
  start; they never queue up.
- Shutdown sets a shared event (which also interrupts interval waits) and joins
  the job threads against one bounded deadline.
"""

import signal
import threading
import time
from typing import Callable, List, Optional

from observability.logging.structured_logger import StructuredLogger, get_logger

from .config import AppConfig
from .connectors.registry import ConnectionRegistry
from .errors import ReplicationError
from .sync_service import SyncService


def coalesce_next_tick(previous_tick: float, now: float, interval: float) -> float:
    """
    Next scheduled start on the fixed-interval grid.

    Args:
        previous_tick: Time the finished cycle was scheduled for
        now: Time the cycle finished
        interval: Seconds between ticks

    Returns:
        `previous_tick + interval`, or, when that is already past, the latest
        grid point not after `now` (an immediate start)
    """
    next_tick = previous_tick + interval
    if next_tick <= now:
        missed = (now - next_tick) // interval
        next_tick += missed * interval
    return next_tick


class SyncWorker(threading.Thread):
    """Thread driving one job's cycles."""

    def __init__(
        self,
        service: SyncService,
        stop_event: threading.Event,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(name=f"sync-{service.name}", daemon=True)
        self.service = service
        self.stop_event = stop_event
        self.interval = service.config.sync_interval
        self.logger = logger or get_logger("replication.scheduler")
        self.clock = clock
        self.cycles = 0
        self.last_result = None

    def _run_cycle(self):
        try:
            self.last_result = self.service.sync_tables()
        except Exception as e:
            self.logger.error(f"Unexpected error in sync job {self.service.name}: {e}", exception=e)
        self.cycles += 1

    def run(self):
        self.logger.log_job_start(self.service.name, {
            "interval_seconds": self.interval,
            "batch_size": self.service.config.batch_size,
            "description": self.service.config.description,
        })

        self._run_cycle()
        # The timer phase starts once the first cycle is done
        next_tick = self.clock() + self.interval

        while not self.stop_event.is_set():
            delay = next_tick - self.clock()
            if delay > 0 and self.stop_event.wait(delay):
                break
            if self.stop_event.is_set():
                break

            self.logger.info("sync start")
            self._run_cycle()
            self.logger.info("sync end")
            next_tick = coalesce_next_tick(next_tick, self.clock(), self.interval)

        self.logger.info(f"Sync job {self.service.name} stopped after {self.cycles} cycles")


class SyncScheduler:
    """
    Supervises one SyncWorker per job and coordinates graceful shutdown.
    """

    def __init__(
        self,
        services: List[SyncService],
        shutdown_timeout: float = 30.0,
        logger: Optional[StructuredLogger] = None
    ):
        self.services = services
        self.shutdown_timeout = shutdown_timeout
        self.logger = logger or get_logger("replication.scheduler")
        self.stop_event = threading.Event()
        self.workers: List[SyncWorker] = []

    def start(self):
        """Start one worker thread per job."""
        for service in self.services:
            worker = SyncWorker(service, self.stop_event, self.logger)
            self.workers.append(worker)
            worker.start()
        self.logger.info(f"Application started successfully: {len(self.workers)} sync jobs running")

    def request_stop(self):
        """Ask every worker to stop after its current cycle."""
        self.stop_event.set()

    def _signal_handler(self, signum, frame):
        self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.request_stop()

    def install_signal_handlers(self):
        """Route SIGINT/SIGTERM to request_stop (main thread only)."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def wait(self, poll_interval: float = 1.0):
        """Block until shutdown is requested."""
        while not self.stop_event.wait(poll_interval):
            pass

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Request shutdown and join workers against a single deadline.

        Args:
            timeout: Grace period in seconds (defaults to shutdown_timeout)

        Returns:
            True when every worker finished within the grace period. Workers
            still running are abandoned; they are daemon threads, and the live
            tables they target only change on a completed swap.
        """
        self.request_stop()
        timeout = self.shutdown_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        for worker in self.workers:
            worker.join(max(0.0, deadline - time.monotonic()))

        still_running = [w.service.name for w in self.workers if w.is_alive()]
        if still_running:
            self.logger.error(
                f"Timeout while waiting for sync tasks to complete, abandoning: {still_running}"
            )
            return False
        self.logger.info("All sync tasks completed")
        return True

    def run_forever(self) -> bool:
        """Start, wait for SIGINT/SIGTERM, then shut down gracefully."""
        self.install_signal_handlers()
        self.start()
        self.wait()
        self.logger.info("Shutting down...")
        return self.stop()


def create_sync_services(
    config: AppConfig,
    registry: ConnectionRegistry,
    logger: Optional[StructuredLogger] = None
) -> List[SyncService]:
    """
    Build a SyncService per configured job.

    A job whose connections or schemas cannot be resolved is logged and skipped;
    the remaining jobs are unaffected. Failed jobs are not retried until restart.
    """
    logger = logger or get_logger("replication.scheduler")
    services = []
    for job in config.jobs:
        try:
            services.append(SyncService.from_registry(registry, job))
        except ReplicationError as e:
            logger.error(
                f"Failed to create sync service for {job.name}: {e}",
                extra={"error_type": type(e).__name__},
                exception=e
            )
            continue
        logger.info(f"Starting sync for table {job.source.label} -> {job.target.table}")
    return services
