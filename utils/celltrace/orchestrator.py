"""
Per-tick coordinator between the radio snapshot, the trace and the cache.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, Iterable

from utils.celltrace.location_cache import LocationCache
from utils.celltrace.models import CellKey, CellObservation, RawCellInfo
from utils.celltrace.normalizer import format_timestamp, normalize
from utils.celltrace.trace_store import TraceStore

logger = logging.getLogger('celltrace.orchestrator')


class ResolutionOrchestrator:
    """
    Normalizes a snapshot, traces every observation and schedules location
    resolution for each distinct cell key.

    Trace appends happen on the calling thread in snapshot order; resolution
    runs as a side task through ``submit`` and never delays the append path.
    """

    def __init__(
        self,
        cache: LocationCache,
        store: TraceStore,
        submit: Callable[..., Future] | None = None
    ):
        self.cache = cache
        self.store = store
        self.submit = submit
        self.snapshots_processed = 0
        self.observations_dropped = 0

    def process_snapshot(
        self,
        tick_id: int,
        cells: Iterable[RawCellInfo] | None,
        timestamp: str | None = None
    ) -> list[CellObservation]:
        """
        Handle one radio snapshot.

        Args:
            tick_id: Scheduler tick the snapshot belongs to
            cells: Raw cell records; None or empty is a no-op
            timestamp: Shared snapshot timestamp (defaults to now)

        Returns:
            The observations that were produced, in snapshot order
        """
        cells = list(cells or [])
        if not cells:
            logger.info(f"Tick {tick_id}: no cell info available")
            return []

        logger.info(f"Tick {tick_id}: {len(cells)} cells detected")
        timestamp = timestamp or format_timestamp()

        observations = []
        seen: set[CellKey] = set()
        for raw in cells:
            observation = normalize(raw, timestamp)
            if observation is None:
                self.observations_dropped += 1
                continue

            if self.store.append(observation):
                observations.append(observation)

            key = observation.key
            if key is not None and key not in seen:
                seen.add(key)
                self._schedule_resolution(key, observation, tick_id)

        self.snapshots_processed += 1
        return observations

    def _schedule_resolution(self, key: CellKey, observation: CellObservation, tick_id: int) -> None:
        if self.submit is None:
            self.cache.resolve(key, observation.radio, tick_id)
            return
        try:
            self.submit(self.cache.resolve, key, observation.radio, tick_id)
        except RuntimeError as e:
            # Executor already shut down
            logger.debug(f"Resolution of {key} not scheduled: {e}")
