"""
Data model for cell trace observations.

Raw radio records arrive as one of three variants (LTE, NR, WCDMA) that
mirror what a modem reports for a visible cell. The normalizer turns them
into a single canonical ``CellObservation`` which is what the trace store
persists, one JSON object per line.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Union

# Sentinels a modem reports for unavailable 32/64-bit identity fields
UNAVAILABLE = 2**31 - 1
UNAVAILABLE_LONG = 2**63 - 1


class RadioType(Enum):
    """Radio access technologies understood by the pipeline."""
    LTE = 'lte'
    NR = 'nr'
    WCDMA = 'wcdma'

    @property
    def label(self) -> str:
        """Human readable generation label."""
        return _RADIO_LABELS[self]


_RADIO_LABELS = {
    RadioType.NR: '5G NR',
    RadioType.LTE: '4G LTE',
    RadioType.WCDMA: '3G WCDMA',
}


class Coordinate(NamedTuple):
    """WGS-84 position of a cell."""
    lat: float
    lon: float


@dataclass(frozen=True)
class CellKey:
    """Identity of a cell: mcc, mnc, area code and cell id as strings."""
    mcc: str
    mnc: str
    area: str
    cell: str

    def __post_init__(self):
        for name in ('mcc', 'mnc', 'area', 'cell'):
            value = getattr(self, name)
            if not value or value.lower() in ('null', 'unknown'):
                raise ValueError(f"CellKey.{name} must be non-empty, got {value!r}")

    def __str__(self) -> str:
        return f"{self.mcc}-{self.mnc}-{self.area}-{self.cell}"

    @classmethod
    def parse(cls, text: str) -> CellKey:
        """Parse the canonical ``mcc-mnc-area-cell`` form."""
        parts = text.strip().split('-')
        if len(parts) != 4:
            raise ValueError(f"Invalid cell key: {text!r}")
        return cls(*(p.strip() for p in parts))


# =============================================================================
# Raw radio records
# =============================================================================

@dataclass(frozen=True)
class LteCellInfo:
    """Raw LTE cell as reported by the modem."""
    registered: bool
    mcc: str | None
    mnc: str | None
    tac: int = UNAVAILABLE
    ci: int = UNAVAILABLE
    pci: int = UNAVAILABLE
    rsrp: int = UNAVAILABLE
    rsrq: int = UNAVAILABLE
    rssnr: int = UNAVAILABLE


@dataclass(frozen=True)
class NrCellInfo:
    """Raw 5G NR cell as reported by the modem."""
    registered: bool
    mcc: str | None
    mnc: str | None
    tac: int = UNAVAILABLE
    nci: int = UNAVAILABLE_LONG
    pci: int = UNAVAILABLE
    ss_rsrp: int = UNAVAILABLE
    ss_rsrq: int = UNAVAILABLE
    ss_sinr: int = UNAVAILABLE


@dataclass(frozen=True)
class WcdmaCellInfo:
    """Raw WCDMA (UMTS) cell as reported by the modem."""
    registered: bool
    mcc: str | None
    mnc: str | None
    lac: int = UNAVAILABLE
    cid: int = UNAVAILABLE
    psc: int = UNAVAILABLE
    dbm: int = UNAVAILABLE


RawCellInfo = Union[LteCellInfo, NrCellInfo, WcdmaCellInfo]


# =============================================================================
# Canonical record
# =============================================================================

@dataclass(frozen=True)
class CellObservation:
    """Canonical, immutable record of one observed cell at one instant."""
    radio: RadioType
    mcc: int | None
    mnc: int | None
    lac: int | None
    cellid: int | None
    timestamp: str
    metrics: dict[str, int | None] = field(default_factory=dict)
    key: CellKey | None = None

    @property
    def signal_dbm(self) -> int | None:
        """Primary signal level (RSRP for LTE/NR, RSCP for WCDMA)."""
        if self.radio is RadioType.WCDMA:
            return self.metrics.get('rscp')
        return self.metrics.get('rsrp')

    def to_dict(self) -> dict[str, Any]:
        """Convert to the canonical wire dictionary (field order preserved)."""
        result: dict[str, Any] = {
            'radio': self.radio.value,
            'mcc': self.mcc,
            'mnc': self.mnc,
            'lac': self.lac,
            'cellid': self.cellid,
        }
        result.update(self.metrics)
        result['timestamp'] = self.timestamp
        return result

    def to_json(self) -> str:
        """Serialize as one compact JSON line (without trailing newline)."""
        return json.dumps(self.to_dict(), separators=(',', ':'))

    @classmethod
    def from_json(cls, line: str) -> CellObservation:
        """Parse a canonical JSON line back into an observation."""
        data = json.loads(line)
        radio = RadioType(data.pop('radio'))
        mcc = data.pop('mcc', None)
        mnc = data.pop('mnc', None)
        lac = data.pop('lac', None)
        cellid = data.pop('cellid', None)
        timestamp = data.pop('timestamp', '')
        key = None
        if None not in (mcc, mnc, lac, cellid):
            key = CellKey(str(mcc), str(mnc), str(lac), str(cellid))
        return cls(
            radio=radio,
            mcc=mcc,
            mnc=mnc,
            lac=lac,
            cellid=cellid,
            timestamp=timestamp,
            metrics=data,
            key=key,
        )
