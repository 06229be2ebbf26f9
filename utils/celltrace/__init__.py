"""
Celltrace - passive serving-cell logger

Periodically samples the visible cells, writes every observation to a
bounded ring of NDJSON trace files, resolves cell positions through a
tiered cache and ships traces to an external webhook sink.
"""

from __future__ import annotations

from .models import (
    CellKey,
    CellObservation,
    Coordinate,
    LteCellInfo,
    NrCellInfo,
    RadioType,
    RawCellInfo,
    WcdmaCellInfo,
)

from .normalizer import (
    format_timestamp,
    normalize,
)

from .geolocation import (
    GeolocationClient,
    GeolocationConnectionError,
    GeolocationError,
)

from .location_cache import LocationCache

from .trace_store import (
    TraceStore,
    iter_observations,
    ring_file_name,
)

from .export_sink import (
    ExportResult,
    ExportSinkAdapter,
    ExportStatus,
    SinkDeliveryError,
)

from .orchestrator import ResolutionOrchestrator

from .radio_source import (
    RadioSource,
    ReplayRadioSource,
    raw_cell_from_dict,
)

from .scheduler import (
    PeriodicTask,
    ScanScheduler,
)

from .settings import PipelineConfig

from .pipeline import CellTracePipeline

__all__ = [
    # Models
    'CellKey',
    'CellObservation',
    'Coordinate',
    'LteCellInfo',
    'NrCellInfo',
    'RadioType',
    'RawCellInfo',
    'WcdmaCellInfo',
    # Normalizer
    'format_timestamp',
    'normalize',
    # Geolocation
    'GeolocationClient',
    'GeolocationConnectionError',
    'GeolocationError',
    # Storage
    'LocationCache',
    'TraceStore',
    'iter_observations',
    'ring_file_name',
    # Export
    'ExportResult',
    'ExportSinkAdapter',
    'ExportStatus',
    'SinkDeliveryError',
    # Pipeline
    'ResolutionOrchestrator',
    'RadioSource',
    'ReplayRadioSource',
    'raw_cell_from_dict',
    'PeriodicTask',
    'ScanScheduler',
    'PipelineConfig',
    'CellTracePipeline',
]
