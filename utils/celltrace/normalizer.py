"""
Event normalizer: raw radio record -> canonical CellObservation.

Only the serving (registered) cells are kept. Neighbour entries lack a
reliable identity and are dropped, as are records with no operator
(mcc/mnc) identity. Area code and cell id may be unavailable; the record
is still traced with ``null`` in those fields but carries no ``CellKey``
and therefore never reaches the location cache.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from utils.celltrace.models import (
    UNAVAILABLE,
    UNAVAILABLE_LONG,
    CellKey,
    CellObservation,
    LteCellInfo,
    NrCellInfo,
    RadioType,
    RawCellInfo,
    WcdmaCellInfo,
)

logger = logging.getLogger('celltrace.normalizer')


def format_timestamp(moment: datetime | None = None) -> str:
    """Format a timestamp as ISO-8601 with milliseconds and UTC offset."""
    if moment is None:
        moment = datetime.now().astimezone()
    elif moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.isoformat(timespec='milliseconds')


def _opt(value: int, sentinel: int = UNAVAILABLE) -> int | None:
    """Map a modem sentinel to None."""
    return None if value == sentinel else value


def _operator(raw: RawCellInfo) -> tuple[str, str] | None:
    mcc = (raw.mcc or '').strip()
    mnc = (raw.mnc or '').strip()
    if not mcc.isdigit() or not mnc.isdigit():
        return None
    return mcc, mnc


def _build(
    radio: RadioType,
    operator: tuple[str, str],
    area: int | None,
    cell: int | None,
    metrics: dict[str, int | None],
    timestamp: str,
) -> CellObservation:
    mcc, mnc = operator
    key = None
    if area is not None and cell is not None:
        key = CellKey(mcc, mnc, str(area), str(cell))
    return CellObservation(
        radio=radio,
        mcc=int(mcc),
        mnc=int(mnc),
        lac=area,
        cellid=cell,
        timestamp=timestamp,
        metrics=metrics,
        key=key,
    )


def _normalize_lte(raw: LteCellInfo, operator: tuple[str, str], timestamp: str) -> CellObservation:
    return _build(
        RadioType.LTE, operator, _opt(raw.tac), _opt(raw.ci),
        {'rsrp': raw.rsrp, 'rsrq': raw.rsrq, 'rssnr': raw.rssnr},
        timestamp,
    )


def _normalize_nr(raw: NrCellInfo, operator: tuple[str, str], timestamp: str) -> CellObservation:
    # NR reports synchronization-signal metrics; they map onto the LTE names
    return _build(
        RadioType.NR, operator, _opt(raw.tac), _opt(raw.nci, UNAVAILABLE_LONG),
        {'rsrp': raw.ss_rsrp, 'rsrq': raw.ss_rsrq, 'rssinr': raw.ss_sinr},
        timestamp,
    )


def _normalize_wcdma(raw: WcdmaCellInfo, operator: tuple[str, str], timestamp: str) -> CellObservation:
    return _build(
        RadioType.WCDMA, operator, _opt(raw.lac), _opt(raw.cid),
        {'psc': _opt(raw.psc), 'rscp': raw.dbm},
        timestamp,
    )


_NORMALIZERS: dict[type, Callable[..., CellObservation]] = {
    LteCellInfo: _normalize_lte,
    NrCellInfo: _normalize_nr,
    WcdmaCellInfo: _normalize_wcdma,
}


def normalize(raw: RawCellInfo, timestamp: str) -> CellObservation | None:
    """
    Convert one raw radio record into a canonical observation.

    Args:
        raw: Raw LTE, NR or WCDMA cell record
        timestamp: Pre-formatted ISO-8601 timestamp shared by the snapshot

    Returns:
        CellObservation, or None if the cell is unregistered, lacks an
        operator identity or is of an unsupported type
    """
    handler = _NORMALIZERS.get(type(raw))
    if handler is None:
        logger.debug(f"Unsupported cell type: {type(raw).__name__}")
        return None

    if not raw.registered:
        return None

    operator = _operator(raw)
    if operator is None:
        return None

    return handler(raw, operator, timestamp)
