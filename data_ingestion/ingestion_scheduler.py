"""
Ingestion Scheduler - drives the recurring DeFiLlama snapshot cycle.

States:
    IDLE -> FETCHING -> PROCESSING -> SLEEPING -> FETCHING -> ...
    any state -> STOPPED (explicit shutdown only)

Usage:
    scheduler = IngestionScheduler(feed_client, repository, embedding_client)
    scheduler.start()
    # ... cycles run in a background thread ...
    scheduler.stop()

Tests drive single cycles with run_cycle() without starting the thread.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from config import INGESTION_INTERVAL_SECONDS, INGESTION_MAX_WORKERS, TARGET_CHAIN
from data_ingestion.fetch_defillama_pools import CycleReport, ErrorReport, log_error_report, run_ingestion_cycle

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class IngestionScheduler:
    """
    Runs one ingestion cycle at a time, sleeping a fixed interval between
    cycles. No error from a cycle or a record ends the loop; only stop() does.
    """

    def __init__(
        self,
        feed_client,
        repository,
        embedding_client=None,
        target_chain: str = TARGET_CHAIN,
        interval_seconds: float = INGESTION_INTERVAL_SECONDS,
        max_workers: int = INGESTION_MAX_WORKERS,
        error_sink: Callable[[ErrorReport], None] = log_error_report,
    ):
        self.feed_client = feed_client
        self.repository = repository
        self.embedding_client = embedding_client
        self.target_chain = target_chain
        self.interval_seconds = interval_seconds
        self.max_workers = max_workers
        self.error_sink = error_sink

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._cycle_count = 0
        self.last_report: Optional[CycleReport] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _set_state(self, state: SchedulerState) -> None:
        with self._state_lock:
            if self._state == SchedulerState.STOPPED:
                return
            logger.debug(f"Scheduler state {self._state.value} -> {state.value}")
            self._state = state

    def _report(self, report: ErrorReport) -> None:
        try:
            self.error_sink(report)
        except Exception:
            logger.exception(f"Error sink failed while reporting {report.kind}")

    # =========================================================================
    # Cycle
    # =========================================================================

    def run_cycle(self) -> CycleReport:
        """
        Runs exactly one fetch/process pass and leaves the machine in SLEEPING.
        Concurrent callers are serialized so cycles never overlap.
        """
        with self._cycle_lock:
            if self._state == SchedulerState.STOPPED:
                raise RuntimeError("Scheduler has been stopped")
            self._cycle_count += 1
            cycle = self._cycle_count
            self._set_state(SchedulerState.FETCHING)
            try:
                report = run_ingestion_cycle(
                    self.feed_client,
                    self.repository,
                    embedding_client=self.embedding_client,
                    target_chain=self.target_chain,
                    max_workers=self.max_workers,
                    report_error=self._report,
                    cycle=cycle,
                    on_phase=lambda phase: self._set_state(SchedulerState.PROCESSING),
                )
            finally:
                self._set_state(SchedulerState.SLEEPING)
            self.last_report = report
            return report

    # =========================================================================
    # Loop
    # =========================================================================

    def start(self) -> None:
        """Starts the background loop; the first cycle begins immediately."""
        if self._thread is not None:
            raise RuntimeError("Scheduler already started")
        if self._state == SchedulerState.STOPPED:
            raise RuntimeError("Scheduler has been stopped")

        logger.info(
            f"Starting ingestion scheduler (chain={self.target_chain}, interval={self.interval_seconds}s)"
        )
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="ingestion-scheduler", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        logger.info("Ingestion loop started")
        while not self._stop_event.is_set():
            try:
                report = self.run_cycle()
                logger.info(
                    f"Cycle {report.cycle} done: {report.written}/{report.attempted} written"
                    + (f", fetch failed ({report.error.kind})" if report.error else "")
                )
            except Exception as e:
                logger.error(f"Error in ingestion loop: {e}", exc_info=True)
                self._set_state(SchedulerState.SLEEPING)
            self._stop_event.wait(self.interval_seconds)
        logger.info("Ingestion loop ended")

    def stop(self, timeout: float = 60.0) -> None:
        """
        Stops scheduling new cycles. An in-flight cycle is allowed to finish;
        network calls are not interrupted.
        """
        if self._state == SchedulerState.STOPPED:
            return

        logger.info("Stopping ingestion scheduler...")
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Ingestion thread did not stop within timeout")

        with self._state_lock:
            self._state = SchedulerState.STOPPED
        logger.info("Ingestion scheduler stopped")
