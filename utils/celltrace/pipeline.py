"""
Pipeline context: owns every component and its lifecycle.

Nothing in the pipeline is module-global. Entry points (CLI, Flask routes)
receive the ``CellTracePipeline`` instance and call ``start``/``stop`` on it.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

from utils.celltrace.export_sink import ExportResult, ExportSinkAdapter
from utils.celltrace.geolocation import GeolocationClient
from utils.celltrace.location_cache import LocationCache
from utils.celltrace.models import CellKey
from utils.celltrace.orchestrator import ResolutionOrchestrator
from utils.celltrace.radio_source import RadioSource
from utils.celltrace.scheduler import PeriodicTask, ScanScheduler
from utils.celltrace.settings import PipelineConfig
from utils.celltrace.trace_store import TraceStore, iter_observations

logger = logging.getLogger('celltrace.pipeline')


class CellTracePipeline:
    """Scan -> normalize -> trace -> resolve -> export, with explicit lifecycle."""

    def __init__(
        self,
        cfg: PipelineConfig,
        source: RadioSource,
        client: GeolocationClient | None = None
    ):
        self.config = cfg
        self.source = source
        self.client = client or GeolocationClient(
            cfg.geolocation_url,
            cfg.geolocation_token,
            connect_timeout=cfg.connect_timeout,
            read_timeout=cfg.read_timeout,
        )

        self.cache = LocationCache(cfg.reference_dataset or None, cfg.cache_path, self.client)
        self.store = TraceStore(cfg.data_dir, cfg.max_files, cfg.events_per_file)
        self.exporter = ExportSinkAdapter(
            cfg.sink_url,
            self.store,
            self.cache,
            digest_events=cfg.digest_events,
            connect_timeout=cfg.connect_timeout,
            read_timeout=cfg.read_timeout,
            submit=self.submit,
            max_retained_traces=cfg.max_retained_traces,
        )
        self.store.on_wrap = self.exporter.on_ring_wrap
        self.orchestrator = ResolutionOrchestrator(self.cache, self.store, submit=self.submit)
        self.scanner = ScanScheduler(
            source,
            self.orchestrator,
            cfg.scan_interval,
            dispatch=self.dispatch_snapshot,
        )

        self._executor: ThreadPoolExecutor | None = None
        # Single worker so snapshots are traced in arrival order
        self._writer: ThreadPoolExecutor | None = None
        self._last_write: Future | None = None
        self._futures: set[Future] = set()
        self._futures_lock = threading.Lock()
        self._export_task: PeriodicTask | None = None
        self._state_lock = threading.Lock()
        self.started_at: float | None = None

    # =========================================================================
    # Background work
    # =========================================================================

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Run ``fn`` on the pipeline's worker pool and track the task.

        Raises:
            RuntimeError: If the pipeline is not running
        """
        executor = self._executor
        if executor is None:
            raise RuntimeError("Pipeline is not running")
        future = executor.submit(fn, *args)
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background task failed: {error}", exc_info=error)

    def dispatch_snapshot(self, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Queue snapshot processing on the trace writer thread.

        Appends, rotation and the wrap-time merge run there instead of on the
        scan thread or the radio source's callback thread.

        Raises:
            RuntimeError: If the pipeline is not running
        """
        writer = self._writer
        if writer is None:
            raise RuntimeError("Pipeline is not running")
        future = writer.submit(fn, *args)
        with self._futures_lock:
            self._futures.add(future)
            self._last_write = future
        future.add_done_callback(self._task_done)
        return future

    @property
    def pending_tasks(self) -> int:
        with self._futures_lock:
            return len(self._futures)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Load the cache, reset the ring and start both schedulers."""
        with self._state_lock:
            if self._executor is not None:
                return

            self._executor = ThreadPoolExecutor(
                max_workers=max(1, self.config.resolve_workers),
                thread_name_prefix='celltrace-worker'
            )
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix='celltrace-writer')
            self.cache.load()
            self.store.start()
            self.started_at = time.time()

            self.submit(self.exporter.send_status, 'start')
            self.scanner.start()

            self._export_task = PeriodicTask(
                'export-scheduler',
                self.exporter.export_partial,
                self.config.export_interval
            )
            self._export_task.start()
            logger.info("Cell trace pipeline started")

    def stop(self, grace: float | None = None) -> int:
        """
        Stop both schedulers, send the final notice and partial export, and
        wait up to ``grace`` seconds for outstanding work.

        Returns:
            Number of tasks abandoned after the grace period
        """
        with self._state_lock:
            if self._executor is None:
                return 0

            self.scanner.stop()
            if self._export_task is not None:
                self._export_task.stop()
                self._export_task = None

            grace = self.config.shutdown_grace if grace is None else grace
            deadline = time.monotonic() + grace

            # Snapshots already queued are traced before the final export
            writer = self._writer
            self._writer = None
            with self._futures_lock:
                last_write = self._last_write
                self._last_write = None
            if last_write is not None:
                wait([last_write], timeout=grace)

            self.submit(self.exporter.send_status, 'stop')
            self.submit(self.exporter.export_partial)

            with self._futures_lock:
                outstanding = set(self._futures)
            _, not_done = wait(outstanding, timeout=max(0.0, deadline - time.monotonic()))
            if not_done:
                logger.warning(f"Abandoning {len(not_done)} background tasks after {grace}s grace period")

            writer.shutdown(wait=False, cancel_futures=True)
            executor = self._executor
            self._executor = None
            executor.shutdown(wait=False, cancel_futures=True)
            logger.info("Cell trace pipeline stopped")
            return len(not_done)

    # =========================================================================
    # On-demand operations
    # =========================================================================

    def export_now(self) -> ExportResult:
        """Send the active trace file immediately."""
        return self.exporter.export_partial()

    def detected_cells(self) -> list[dict]:
        """
        Unique cells found in the trace files on disk with their cached
        position (no remote lookups).
        """
        cells: dict[CellKey, dict] = {}
        for path in self.store.discover_files():
            for observation in iter_observations(path):
                key = observation.key
                if key is None or key in cells:
                    continue
                location = self.cache.lookup_observation(observation)
                cells[key] = {
                    'key': str(key),
                    'radio': observation.radio.value,
                    'lat': location.lat if location else None,
                    'lon': location.lon if location else None,
                    'found': location is not None,
                }
        return list(cells.values())

    def stats(self) -> dict:
        """Runtime counters for status reporting."""
        result = {
            'running': self.running,
            'uptime': round(time.time() - self.started_at, 1) if self.started_at and self.running else 0,
            'tick_id': self.scanner.tick_id,
            'snapshots_processed': self.orchestrator.snapshots_processed,
            'observations_dropped': self.orchestrator.observations_dropped,
            'pending_tasks': self.pending_tasks,
            'sink_configured': self.exporter.enabled,
            'trace': self.store.stats(),
            'cache': self.cache.stats(),
            'last_partial_export': self.exporter.last_partial.to_dict() if self.exporter.last_partial else None,
            'last_full_export': self.exporter.last_full.to_dict() if self.exporter.last_full else None,
        }
        return result
