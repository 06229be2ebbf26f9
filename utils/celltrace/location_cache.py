"""
Tiered cell location cache.

Lookup order is memory -> durable local CSV -> remote geolocation service.
The memory tier is seeded at startup from the bundled reference dataset
(read-only) and then from the durable cache file; the first source to
provide a key wins. Remote hits are written through to memory and appended
to the durable file. Entries never expire.

Reference dataset columns (by index): 1=mcc, 2=mnc, 3=area, 4=cell, 6=lat, 7=lon
Durable cache columns: radio,mcc,mnc,area,cell,unit,lon,lat (lon before lat)
"""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path

from utils.celltrace.geolocation import GeolocationClient
from utils.celltrace.models import CellKey, CellObservation, Coordinate, RadioType
from utils.validation import validate_latitude, validate_longitude

logger = logging.getLogger('celltrace.cache')

CACHE_HEADER = ['radio', 'mcc', 'mnc', 'area', 'cell', 'unit', 'lon', 'lat']


def _parse_coordinate(lat: str, lon: str) -> Coordinate | None:
    try:
        return Coordinate(validate_latitude(lat.strip()), validate_longitude(lon.strip()))
    except ValueError:
        return None


def _parse_key(mcc: str, mnc: str, area: str, cell: str) -> CellKey | None:
    try:
        return CellKey(mcc.strip(), mnc.strip(), area.strip(), cell.strip())
    except ValueError:
        return None


class LocationCache:
    """Thread-safe cell key -> coordinate cache with remote fallback."""

    def __init__(
        self,
        reference_path: str | Path | None,
        cache_path: str | Path,
        client: GeolocationClient | None = None
    ):
        """
        Initialize the cache.

        Args:
            reference_path: Bundled read-only reference CSV (optional)
            cache_path: Durable read-write cache CSV
            client: Remote geolocation client; None disables remote lookups
        """
        self.reference_path = Path(reference_path) if reference_path else None
        self.cache_path = Path(cache_path)
        self.client = client

        self._memory: dict[CellKey, Coordinate] = {}
        self._lock = threading.Lock()
        self._last_queried: dict[CellKey, int] = {}
        self._newest_tick = 0

        # Single writer for the durable file: check-and-append happens under this lock
        self._durable_lock = threading.Lock()
        self._durable_keys: set[CellKey] = set()

        self.remote_queries = 0
        self.remote_hits = 0

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> tuple[int, int]:
        """
        Seed the memory tier from the reference dataset, then the durable cache.

        Returns:
            (entries taken from the reference dataset, entries taken from the durable cache)
        """
        from_reference = self._load_reference()
        from_cache = self._load_durable()
        logger.info(
            f"Location cache loaded: {from_reference:,} reference + "
            f"{from_cache:,} cached cells"
        )
        return from_reference, from_cache

    def _load_reference(self) -> int:
        if self.reference_path is None:
            return 0
        if not self.reference_path.exists():
            logger.warning(f"Reference dataset not found: {self.reference_path}")
            return 0

        added = 0
        try:
            with open(self.reference_path, 'r', encoding='utf-8', newline='') as f:
                reader = csv.reader(f)
                next(reader, None)  # header
                for parts in reader:
                    if len(parts) < 8:
                        continue
                    key = _parse_key(parts[1], parts[2], parts[3], parts[4])
                    location = _parse_coordinate(parts[6], parts[7])
                    if key is None or location is None:
                        continue
                    with self._lock:
                        if key not in self._memory:
                            self._memory[key] = location
                            added += 1
        except OSError as e:
            logger.error(f"Error loading reference dataset {self.reference_path}: {e}")
        return added

    def _load_durable(self) -> int:
        if not self.cache_path.exists():
            return 0

        added = 0
        try:
            with open(self.cache_path, 'r', encoding='utf-8', newline='') as f:
                reader = csv.DictReader(f)
                for row in reader:
                    key = _parse_key(
                        row.get('mcc') or '', row.get('mnc') or '',
                        row.get('area') or '', row.get('cell') or ''
                    )
                    location = _parse_coordinate(row.get('lat') or '', row.get('lon') or '')
                    if key is None or location is None:
                        continue
                    with self._durable_lock:
                        self._durable_keys.add(key)
                    with self._lock:
                        if key not in self._memory:
                            self._memory[key] = location
                            added += 1
        except OSError as e:
            logger.error(f"Error loading location cache {self.cache_path}: {e}")
        return added

    # =========================================================================
    # Queries
    # =========================================================================

    def lookup(self, key: CellKey) -> Coordinate | None:
        """Return the cached coordinate for a key, never touching the network."""
        with self._lock:
            return self._memory.get(key)

    def lookup_observation(self, observation: CellObservation) -> Coordinate | None:
        """
        Look up the cell of a traced record.

        Trace records carry mnc as an integer, so a leading zero may have been
        lost; the zero-padded form is tried as well.
        """
        key = observation.key
        if key is None:
            return None
        location = self.lookup(key)
        if location is None and len(key.mnc) < 2:
            location = self.lookup(CellKey(key.mcc, key.mnc.zfill(2), key.area, key.cell))
        return location

    def resolve(self, key: CellKey, radio: RadioType | None, tick_id: int) -> Coordinate | None:
        """
        Resolve a key, falling back to the remote service on a miss.

        A remote query is issued at most once per key per tick. Failures are
        not cached, so an unresolvable key is retried on the next tick it
        appears in.
        """
        location = self.lookup(key)
        if location is not None:
            return location

        if self.client is None or not self.client.enabled:
            return None

        with self._lock:
            if tick_id > self._newest_tick:
                self._newest_tick = tick_id
                self._forget_old_ticks(tick_id)
            if self._last_queried.get(key) == tick_id:
                return None
            self._last_queried[key] = tick_id
            self.remote_queries += 1

        location = self.client.locate(key, radio)
        if location is None:
            return None

        with self._lock:
            location = self._memory.setdefault(key, location)
            self.remote_hits += 1
        self._append_durable(key, radio, location)
        logger.info(f"Cell {key} resolved remotely and cached")
        return location

    def _forget_old_ticks(self, tick_id: int) -> None:
        # Caller holds self._lock; the previous tick may still have lookups in flight
        stale = [k for k, t in self._last_queried.items() if t < tick_id - 1]
        for k in stale:
            del self._last_queried[k]

    def _append_durable(self, key: CellKey, radio: RadioType | None, location: Coordinate) -> None:
        with self._durable_lock:
            if key in self._durable_keys:
                return
            try:
                self.cache_path.parent.mkdir(parents=True, exist_ok=True)
                write_header = not self.cache_path.exists() or self.cache_path.stat().st_size == 0
                with open(self.cache_path, 'a', encoding='utf-8', newline='') as f:
                    writer = csv.writer(f, lineterminator='\n')
                    if write_header:
                        writer.writerow(CACHE_HEADER)
                    writer.writerow([
                        radio.value if radio else '',
                        key.mcc, key.mnc, key.area, key.cell,
                        '',
                        location.lon, location.lat,
                    ])
                self._durable_keys.add(key)
            except OSError as e:
                logger.error(f"Error writing location cache {self.cache_path}: {e}")

    # =========================================================================
    # Introspection
    # =========================================================================

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._memory

    def stats(self) -> dict:
        """Cache counters for status reporting."""
        with self._lock:
            size = len(self._memory)
        return {
            'cells': size,
            'durable_cells': len(self._durable_keys),
            'remote_queries': self.remote_queries,
            'remote_hits': self.remote_hits,
            'remote_enabled': bool(self.client and self.client.enabled),
        }
