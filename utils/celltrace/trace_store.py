"""
Bounded ring of append-only NDJSON trace files.

Files are named ``celltrace_events_NNN.ndjson`` (NNN = 001..F) so the ring
can be rediscovered on disk after a restart. The active file takes up to E
records, then the ring advances to the next index; the first write into a
newly entered index overwrites whatever an earlier cycle left there. When
the ring wraps back to index 1 the wrap callback receives the completed
ring files before index 1 is overwritten.
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Callable, Iterable, Iterator

from utils.celltrace.models import CellObservation

logger = logging.getLogger('celltrace.trace_store')

FILE_PREFIX = 'celltrace_events_'
FILE_SUFFIX = '.ndjson'

WrapCallback = Callable[[list[Path]], None]


def ring_file_name(index: int) -> str:
    """File name of the ring slot at ``index`` (1-based)."""
    return f"{FILE_PREFIX}{index:03d}{FILE_SUFFIX}"


def iter_observations(path: Path) -> Iterator[CellObservation]:
    """Yield the records of a trace file, skipping lines that do not parse."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield CellObservation.from_json(line)
                except (ValueError, KeyError, TypeError) as e:
                    logger.debug(f"Skipping unreadable line in {path.name}: {e}")
    except FileNotFoundError:
        return


class TraceStore:
    """Rotating trace writer; all mutations are serialized by one lock."""

    def __init__(
        self,
        directory: str | Path,
        max_files: int = 10,
        events_per_file: int = 50,
        on_wrap: WrapCallback | None = None
    ):
        if max_files < 1 or events_per_file < 1:
            raise ValueError("max_files and events_per_file must be positive")
        self.directory = Path(directory)
        self.max_files = max_files
        self.events_per_file = events_per_file
        self.on_wrap = on_wrap

        self._lock = threading.RLock()
        self.active_index = 1
        self.active_count = 0
        self.total_appended = 0
        self.wraps = 0
        # True until the first append after entering a slot by rotation
        self._fresh = False
        # Bumped each time a slot is overwritten; index 0 unused
        self._generations = [0] * (max_files + 1)

    # =========================================================================
    # Paths
    # =========================================================================

    def ring_path(self, index: int) -> Path:
        return self.directory / ring_file_name(index)

    @property
    def active_path(self) -> Path:
        with self._lock:
            return self.ring_path(self.active_index)

    def ring_paths(self) -> list[Path]:
        """All F ring slots in index order, whether or not they exist."""
        return [self.ring_path(i) for i in range(1, self.max_files + 1)]

    def existing_ring_paths(self) -> list[Path]:
        """Ring slots currently on disk, in index order."""
        return [p for p in self.ring_paths() if p.exists()]

    def discover_files(self) -> list[Path]:
        """Every trace file in the directory, including slots beyond F from older runs."""
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob(f"{FILE_PREFIX}*{FILE_SUFFIX}"))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Reset the ring to index 1; leftover files from a prior run are kept."""
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.active_index = 1
            self.active_count = 0
            self._fresh = False
            logger.info(f"Trace ring started at {self.active_path}")

    # =========================================================================
    # Writing
    # =========================================================================

    def append(self, observation: CellObservation) -> bool:
        """
        Append one record to the active file and rotate if it is full.

        Returns:
            True if the record was written, False on a filesystem error
        """
        line = observation.to_json() + '\n'
        with self._lock:
            path = self.ring_path(self.active_index)
            mode = 'w' if self._fresh else 'a'
            try:
                with open(path, mode, encoding='utf-8') as f:
                    f.write(line)
            except OSError as e:
                logger.error(f"Error writing trace file {path}: {e}")
                return False

            if mode == 'w':
                self._generations[self.active_index] += 1
            self._fresh = False
            self.active_count += 1
            self.total_appended += 1
            self._rotate_if_needed()
            return True

    def _rotate_if_needed(self) -> None:
        if self.active_count < self.events_per_file:
            return

        self.active_index = 1 if self.active_index >= self.max_files else self.active_index + 1
        self.active_count = 0
        self._fresh = True
        logger.info(f"Rotated to trace file {self.ring_path(self.active_index).name}")

        if self.active_index == 1:
            self.wraps += 1
            if self.on_wrap is not None:
                self.on_wrap(self.ring_paths())

    # =========================================================================
    # Reading and cleanup
    # =========================================================================

    def snapshot(self, destination: str | Path) -> Path | None:
        """
        Copy the active file so it can be read without racing the appender.

        Returns:
            Path of the copy, or None if the active file is missing or empty
        """
        destination = Path(destination)
        with self._lock:
            source = self.ring_path(self.active_index)
            if self._fresh or not source.exists() or source.stat().st_size == 0:
                return None
            shutil.copyfile(source, destination)
        return destination

    def slot_generations(self) -> dict[Path, int]:
        """Current write generation of every ring slot, keyed by path."""
        with self._lock:
            return {self.ring_path(i): self._generations[i] for i in range(1, self.max_files + 1)}

    def purge(self, paths: Iterable[Path], generations: dict[Path, int] | None = None) -> list[Path]:
        """
        Delete ring files after a confirmed export.

        Args:
            paths: Ring slots covered by the export
            generations: Slot generations captured when the export was
                built; a slot overwritten since then holds records that
                were not exported and is kept

        The active slot is only deleted while it has not received records
        since the ring entered it.
        """
        removed = []
        with self._lock:
            active = self.ring_path(self.active_index)
            current = {self.ring_path(i): self._generations[i] for i in range(1, self.max_files + 1)}
            for path in paths:
                if path == active and not self._fresh:
                    logger.debug(f"Keeping active trace file {path.name}")
                    continue
                if generations is not None and generations.get(path) != current.get(path):
                    logger.debug(f"Keeping rewritten trace file {path.name}")
                    continue
                try:
                    path.unlink()
                    removed.append(path)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.error(f"Error deleting trace file {path}: {e}")
        return removed

    def stats(self) -> dict:
        with self._lock:
            return {
                'active_file': ring_file_name(self.active_index),
                'active_index': self.active_index,
                'active_count': self.active_count,
                'total_appended': self.total_appended,
                'wraps': self.wraps,
                'max_files': self.max_files,
                'events_per_file': self.events_per_file,
            }
