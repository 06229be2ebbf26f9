"""
Radio observation sources.

A source hands the scheduler a snapshot of the currently visible cells.
Real modems report asynchronously, so snapshots are delivered through a
callback; the scheduler does not wait for it.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from utils.celltrace.models import (
    UNAVAILABLE,
    UNAVAILABLE_LONG,
    LteCellInfo,
    NrCellInfo,
    RawCellInfo,
    WcdmaCellInfo,
)

logger = logging.getLogger('celltrace.radio_source')

SnapshotCallback = Callable[[list[RawCellInfo]], None]
ErrorCallback = Callable[[Exception], None]


def _int(data: dict, name: str, default: int = UNAVAILABLE) -> int:
    value = data.get(name)
    if value is None:
        return default
    return int(value)


def _str(data: dict, name: str) -> str | None:
    value = data.get(name)
    return None if value is None else str(value)


def raw_cell_from_dict(data: dict[str, Any]) -> RawCellInfo:
    """
    Build a raw cell record from its JSON form.

    The ``type`` field selects the variant (lte, nr, wcdma); missing numeric
    fields take the modem's "unavailable" sentinel.

    Raises:
        ValueError: If the type is unknown or a field is malformed
    """
    cell_type = str(data.get('type', '')).lower()
    registered = bool(data.get('registered', False))
    mcc = _str(data, 'mcc')
    mnc = _str(data, 'mnc')

    if cell_type == 'lte':
        return LteCellInfo(
            registered=registered, mcc=mcc, mnc=mnc,
            tac=_int(data, 'tac'), ci=_int(data, 'ci'), pci=_int(data, 'pci'),
            rsrp=_int(data, 'rsrp'), rsrq=_int(data, 'rsrq'), rssnr=_int(data, 'rssnr'),
        )
    if cell_type == 'nr':
        return NrCellInfo(
            registered=registered, mcc=mcc, mnc=mnc,
            tac=_int(data, 'tac'), nci=_int(data, 'nci', UNAVAILABLE_LONG), pci=_int(data, 'pci'),
            ss_rsrp=_int(data, 'ss_rsrp'), ss_rsrq=_int(data, 'ss_rsrq'), ss_sinr=_int(data, 'ss_sinr'),
        )
    if cell_type == 'wcdma':
        return WcdmaCellInfo(
            registered=registered, mcc=mcc, mnc=mnc,
            lac=_int(data, 'lac'), cid=_int(data, 'cid'), psc=_int(data, 'psc'),
            dbm=_int(data, 'dbm'),
        )
    raise ValueError(f"Unsupported cell type: {cell_type!r}")


class RadioSource(ABC):
    """Abstract provider of visible-cell snapshots."""

    def has_permission(self) -> bool:
        """Whether the source may currently read cell information."""
        return True

    @abstractmethod
    def request_cell_info(
        self,
        callback: SnapshotCallback,
        on_error: ErrorCallback | None = None
    ) -> None:
        """
        Request a fresh snapshot.

        The callback may run on another thread, after this method returns.
        """
        pass


class ReplayRadioSource(RadioSource):
    """
    Replays recorded snapshots from a JSON-lines file.

    Each line is a JSON array of raw cell objects (see ``raw_cell_from_dict``).
    Lines are served in order, one per request; after the last line the
    source either starts over or reports empty snapshots.
    """

    def __init__(self, path: str | Path, loop: bool = True):
        self.path = Path(path)
        self.loop = loop
        self._snapshots: list[list[RawCellInfo]] = []
        self._position = 0
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        with open(self.path, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"{self.path}:{line_no}: invalid JSON: {e}")
                    continue
                cells = []
                for entry in entries if isinstance(entries, list) else [entries]:
                    try:
                        cells.append(raw_cell_from_dict(entry))
                    except (ValueError, TypeError, AttributeError) as e:
                        logger.warning(f"{self.path}:{line_no}: skipping cell: {e}")
                self._snapshots.append(cells)
        logger.info(f"Loaded {len(self._snapshots)} snapshots from {self.path}")

    def __len__(self) -> int:
        return len(self._snapshots)

    def next_snapshot(self) -> list[RawCellInfo]:
        with self._lock:
            if not self._snapshots:
                return []
            if self._position >= len(self._snapshots):
                if not self.loop:
                    return []
                self._position = 0
            snapshot = self._snapshots[self._position]
            self._position += 1
            return list(snapshot)

    def request_cell_info(
        self,
        callback: SnapshotCallback,
        on_error: ErrorCallback | None = None
    ) -> None:
        callback(self.next_snapshot())
