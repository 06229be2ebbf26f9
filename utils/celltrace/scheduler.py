"""
Periodic background loops for scanning and exporting.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable

from utils.celltrace.models import RawCellInfo
from utils.celltrace.orchestrator import ResolutionOrchestrator
from utils.celltrace.radio_source import RadioSource

logger = logging.getLogger('celltrace.scheduler')


class PeriodicTask(threading.Thread):
    """Background thread that runs an action at a fixed interval."""

    def __init__(
        self,
        name: str,
        action: Callable[[], None],
        interval_seconds: float,
        initial_delay: float | None = None
    ):
        super().__init__(name=name)
        self.daemon = True
        self.action = action
        self.interval = interval_seconds
        self.initial_delay = interval_seconds if initial_delay is None else initial_delay
        self.stop_event = threading.Event()
        self.runs = 0

    def run(self):
        """Main loop."""
        logger.info(f"{self.name} started (interval: {self.interval}s)")

        if self.initial_delay > 0:
            self.stop_event.wait(self.initial_delay)

        while not self.stop_event.is_set():
            try:
                self.action()
            except Exception as e:
                logger.error(f"{self.name} iteration failed: {e}", exc_info=True)
            self.runs += 1

            # Wait for next interval
            self.stop_event.wait(self.interval)

        logger.info(f"{self.name} stopped")

    def stop(self):
        """Stop the loop; an iteration already running is left to finish."""
        self.stop_event.set()


class ScanScheduler:
    """
    Fires a scan every ``interval`` seconds, starting immediately.

    Each firing takes a new tick id and asks the radio source for a snapshot;
    the snapshot is processed whenever the source calls back, so overlapping
    requests are possible and tolerated. With a ``dispatch`` callable the
    processing is handed off instead of running on the calling thread.
    """

    def __init__(
        self,
        source: RadioSource,
        orchestrator: ResolutionOrchestrator,
        interval_seconds: float = 5.0,
        dispatch: Callable[..., Future] | None = None
    ):
        self.source = source
        self.orchestrator = orchestrator
        self.interval = interval_seconds
        self.dispatch = dispatch
        self._tick_lock = threading.Lock()
        self._tick_id = 0
        self._task: PeriodicTask | None = None

    @property
    def tick_id(self) -> int:
        with self._tick_lock:
            return self._tick_id

    @property
    def running(self) -> bool:
        return self._task is not None and self._task.is_alive()

    def _next_tick(self) -> int:
        with self._tick_lock:
            self._tick_id += 1
            return self._tick_id

    def fire(self) -> int:
        """Run one scan request; returns the tick id used."""
        tick_id = self._next_tick()

        if not self.source.has_permission():
            logger.warning("Location permission not granted, tick skipped")
            return tick_id

        def on_snapshot(cells: list[RawCellInfo]) -> None:
            if self.dispatch is None:
                self.orchestrator.process_snapshot(tick_id, cells)
                return
            try:
                self.dispatch(self.orchestrator.process_snapshot, tick_id, cells)
            except RuntimeError as e:
                logger.warning(f"Tick {tick_id}: snapshot dropped, writer not running: {e}")

        def on_error(error: Exception) -> None:
            logger.warning(f"Tick {tick_id}: cell info update error: {error}")

        try:
            self.source.request_cell_info(on_snapshot, on_error)
        except PermissionError as e:
            logger.error(f"Tick {tick_id}: permission denied reading cell info: {e}")
        return tick_id

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask('scan-scheduler', self.fire, self.interval, initial_delay=0)
        self._task.start()

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.stop()
        self._task = None
