"""
Export of trace data to an external webhook sink.

Two independent paths share one delivery routine:

- partial export: a snapshot of the active trace file plus a short digest,
  sent periodically and on demand; the snapshot copy is always removed.
- full-cycle export: when the ring wraps, all ring files are concatenated
  into ``celltrace_full_trace.ndjson`` and delivered; ring files and the
  merged trace are deleted only after a 2xx response.

Without a configured sink every export reports ``skipped`` and merged
traces stay on disk.
"""

from __future__ import annotations

import json
import logging
import os
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import requests

from data.operators import describe_operator
from utils.celltrace.location_cache import LocationCache
from utils.celltrace.models import CellObservation
from utils.celltrace.trace_store import TraceStore

logger = logging.getLogger('celltrace.export')

MERGED_FILE_NAME = 'celltrace_full_trace.ndjson'
SNAPSHOT_PREFIX = 'celltrace_snapshot_'

EMBED_COLOR = 3447003
STATUS_COLORS = {'start': 0x00FF00, 'stop': 0xFF0000}

Submit = Callable[..., Future]


class SinkDeliveryError(RuntimeError):
    """Exception raised when the sink does not confirm a delivery."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ExportStatus(Enum):
    """Outcome of one export attempt."""
    SENT = 'sent'
    FAILED = 'failed'
    SKIPPED = 'skipped'
    EMPTY = 'empty'


@dataclass
class ExportResult:
    """Result of one export attempt."""
    status: ExportStatus
    detail: str = ''
    path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.status is ExportStatus.SENT

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'detail': self.detail,
            'file': self.path.name if self.path else None,
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _same_file(a: os.stat_result, b: os.stat_result) -> bool:
    """Same inode, size and mtime as when ``a`` was taken."""
    return os.path.samestat(a, b) and a.st_size == b.st_size and a.st_mtime_ns == b.st_mtime_ns


def map_link(lat: float, lon: float) -> str:
    """Markdown link to the position on a web map."""
    return f"[{lat}, {lon}](https://www.google.com/maps?q={lat},{lon}&z=16)"


class ExportSinkAdapter:
    """Delivers trace snapshots and merged traces to the configured sink."""

    def __init__(
        self,
        sink_url: str | None,
        store: TraceStore,
        cache: LocationCache,
        digest_events: int = 5,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        submit: Submit | None = None,
        max_retained_traces: int = 3
    ):
        """
        Initialize the adapter.

        Args:
            sink_url: Webhook URL; empty or None disables delivery
            store: Trace ring to export from
            cache: Location cache used to annotate the digest (no remote calls)
            digest_events: Number of trailing records summarized in a digest
            connect_timeout: Connect timeout in seconds
            read_timeout: Read/write timeout in seconds
            submit: Runs full-cycle delivery in the background; None runs it inline
            max_retained_traces: Undelivered merged traces kept from earlier
                cycles; 0 overwrites the merged trace
        """
        self.sink_url = sink_url or ''
        self.store = store
        self.cache = cache
        self.digest_events = digest_events
        self.timeout = (connect_timeout, read_timeout)
        self.submit = submit
        self.max_retained_traces = max(0, max_retained_traces)

        self.last_partial: ExportResult | None = None
        self.last_full: ExportResult | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.sink_url)

    @property
    def merged_path(self) -> Path:
        return self.store.directory / MERGED_FILE_NAME

    # =========================================================================
    # Delivery
    # =========================================================================

    def _deliver(self, payload: dict, file_path: Path | None = None, file_name: str | None = None) -> None:
        """
        POST a payload (and optional file) to the sink.

        Raises:
            SinkDeliveryError: On network failure or a non-2xx response
        """
        try:
            if file_path is None:
                response = requests.post(self.sink_url, json=payload, timeout=self.timeout)
            else:
                with open(file_path, 'rb') as fh:
                    response = requests.post(
                        self.sink_url,
                        data={'payload_json': json.dumps(payload)},
                        files={'files[0]': (file_name or file_path.name, fh, 'application/json')},
                        timeout=self.timeout
                    )
        except requests.Timeout:
            raise SinkDeliveryError(f"Sink timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise SinkDeliveryError(f"Sink request failed: {e}")

        if not 200 <= response.status_code < 300:
            raise SinkDeliveryError(
                f"Sink returned HTTP {response.status_code}",
                status_code=response.status_code
            )

    # =========================================================================
    # Partial export
    # =========================================================================

    def build_digest(self, lines: list[str], file_name: str, file_index: int, size_bytes: int) -> dict:
        """Build the human-readable summary payload for a partial export."""
        location_lines = []
        preview_blocks = []

        for line in lines[-self.digest_events:]:
            line = line.strip()
            if not line:
                continue
            try:
                observation = CellObservation.from_json(line)
            except (ValueError, KeyError, TypeError):
                location_lines.append("• **Unknown** | unreadable record")
                preview_blocks.append(f"```json\n{line}\n```")
                continue

            location = self.cache.lookup_observation(observation)
            location_text = map_link(*location) if location else 'not found'
            signal = observation.signal_dbm
            signal_text = f"{signal} dBm" if signal is not None else '??? dBm'
            operator = describe_operator(observation.mcc, observation.mnc)
            operator_text = f" | {operator}" if operator else ''

            location_lines.append(
                f"• **{observation.radio.label}**{operator_text} | Signal {signal_text} → {location_text}"
            )
            preview_blocks.append(f"```json\n{line}\n```")

        description = '\n'.join(location_lines) + '\n\n**Latest events:**\n' + '\n'.join(preview_blocks)

        embed = {
            'title': f"Celltrace report (file {file_name})",
            'description': description,
            'color': EMBED_COLOR,
            'fields': [
                {'name': 'Events', 'value': str(len(lines)), 'inline': True},
                {'name': 'Size', 'value': f"{size_bytes // 1024} KB", 'inline': True},
                {'name': 'File', 'value': f"#{file_index:03d}", 'inline': True},
            ],
            'footer': {'text': 'Celltrace Logger • automatic rotation'},
            'timestamp': _utc_now(),
        }
        return {
            'content': '**Partial report**',
            'embeds': [embed],
        }

    def export_partial(self) -> ExportResult:
        """Send a snapshot of the active trace file with a digest."""
        if not self.enabled:
            logger.debug("No sink configured, partial export skipped, not sent")
            result = ExportResult(ExportStatus.SKIPPED, 'skipped, not sent')
            self.last_partial = result
            return result

        stats = self.store.stats()
        snapshot_path = self.store.directory / f"{SNAPSHOT_PREFIX}{stats['active_index']:03d}.ndjson"

        try:
            snapshot = self.store.snapshot(snapshot_path)
        except OSError as e:
            logger.error(f"Error creating trace snapshot: {e}")
            result = ExportResult(ExportStatus.FAILED, str(e))
            self.last_partial = result
            return result

        if snapshot is None:
            logger.info("No data in active trace file")
            result = ExportResult(ExportStatus.EMPTY, 'no data in active file')
            self.last_partial = result
            return result

        try:
            with open(snapshot, 'r', encoding='utf-8') as f:
                lines = f.read().splitlines()
            payload = self.build_digest(
                lines,
                stats['active_file'],
                stats['active_index'],
                snapshot.stat().st_size
            )
            self._deliver(payload, snapshot, stats['active_file'])
            logger.info(f"Partial report sent ({len(lines)} events)")
            result = ExportResult(ExportStatus.SENT, f"{len(lines)} events", snapshot)
        except SinkDeliveryError as e:
            logger.error(f"Partial report failed: {e}")
            result = ExportResult(ExportStatus.FAILED, str(e), snapshot)
        except OSError as e:
            logger.error(f"Error reading trace snapshot {snapshot}: {e}")
            result = ExportResult(ExportStatus.FAILED, str(e), snapshot)
        finally:
            snapshot.unlink(missing_ok=True)

        self.last_partial = result
        return result

    # =========================================================================
    # Full-cycle export
    # =========================================================================

    def _retained_traces(self) -> list[Path]:
        """Undelivered merged traces from earlier cycles, oldest first."""
        merged = self.merged_path
        return sorted(merged.parent.glob(f"{merged.stem}_*{merged.suffix}"))

    def _prune_retained(self) -> None:
        retained = self._retained_traces()
        excess = len(retained) - self.max_retained_traces
        for path in retained[:max(0, excess)]:
            try:
                path.unlink()
                logger.warning(f"Dropped undelivered full trace {path.name} (keeping {self.max_retained_traces})")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Error deleting full trace {path}: {e}")

    def merge_ring(self, ring_paths: list[Path]) -> Path | None:
        """
        Concatenate the ring files in index order into the merged trace.

        A merged trace left over from an earlier, undelivered cycle is kept
        under a timestamped name; only the newest ``max_retained_traces`` of
        those are kept, and with a limit of 0 the merged trace is simply
        overwritten.

        Returns:
            Path of the merged trace, or None if the ring is incomplete
        """
        existing = [p for p in ring_paths if p.exists()]
        if len(existing) < self.store.max_files:
            logger.debug(f"Ring incomplete ({len(existing)}/{self.store.max_files} files), merge skipped")
            return None

        merged = self.merged_path
        if merged.exists() and self.max_retained_traces > 0:
            stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
            retained = merged.with_name(f"{merged.stem}_{stamp}{merged.suffix}")
            merged.rename(retained)
            logger.warning(f"Previous full trace was not delivered, kept as {retained.name}")
            self._prune_retained()

        with open(merged, 'w', encoding='utf-8') as writer:
            for path in existing:
                with open(path, 'r', encoding='utf-8') as reader:
                    for line in reader:
                        line = line.rstrip('\n')
                        if line:
                            writer.write(line + '\n')

        logger.info(f"Full trace generated: {merged.stat().st_size // 1024} KB")
        return merged

    def _find_trace(self, merged: Path, identity: os.stat_result) -> Path | None:
        """Current path of a merged trace, following it if a later wrap renamed it."""
        for path in [merged] + self._retained_traces():
            try:
                if _same_file(identity, path.stat()):
                    return path
            except FileNotFoundError:
                continue
        return None

    def deliver_full_trace(
        self,
        merged: Path,
        ring_paths: list[Path],
        generations: dict[Path, int] | None = None,
        identity: os.stat_result | None = None
    ) -> ExportResult:
        """
        Send the merged trace; purge it and the ring files only on success.

        Args:
            merged: Merged trace built at wrap time
            ring_paths: Ring slots concatenated into it
            generations: Slot generations at merge time; slots rewritten
                since then are not purged
            identity: ``stat`` of the merged trace taken right after the
                merge; identifies the file if a later wrap has renamed it
        """
        if not self.enabled:
            logger.info(f"No sink configured, full trace kept at {merged} and not sent")
            result = ExportResult(ExportStatus.SKIPPED, 'skipped, not sent', merged)
            self.last_full = result
            return result

        payload = {'content': f"**Full trace collected!** ({len(ring_paths)} files merged)"}
        try:
            if identity is None:
                identity = merged.stat()
            source = self._find_trace(merged, identity)
            if source is None:
                raise FileNotFoundError(f"Full trace {merged.name} is no longer on disk")
            self._deliver(payload, source, MERGED_FILE_NAME)
        except (SinkDeliveryError, OSError) as e:
            logger.error(f"Full trace delivery failed, files kept on disk: {e}")
            result = ExportResult(ExportStatus.FAILED, str(e), merged)
            self.last_full = result
            return result

        logger.info("Full trace sent")
        self.store.purge(ring_paths, generations)
        try:
            source.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error deleting full trace {source}: {e}")
        result = ExportResult(ExportStatus.SENT, f"{len(ring_paths)} files", source)
        self.last_full = result
        return result

    def on_ring_wrap(self, ring_paths: list[Path]) -> None:
        """
        Trace store wrap callback.

        Merging happens immediately so the completed cycle is captured before
        slot 1 is reused; delivery runs in the background when a submitter is set.
        """
        generations = self.store.slot_generations()
        try:
            merged = self.merge_ring(ring_paths)
            identity = merged.stat() if merged is not None else None
        except OSError as e:
            logger.error(f"Error generating full trace: {e}")
            return
        if merged is None:
            return

        if self.submit is None:
            self.deliver_full_trace(merged, ring_paths, generations, identity)
            return
        try:
            self.submit(self.deliver_full_trace, merged, ring_paths, generations, identity)
        except RuntimeError as e:
            # Worker pool already shut down; the merged trace stays on disk
            logger.warning(f"Full trace delivery not scheduled, kept at {merged}: {e}")

    # =========================================================================
    # Lifecycle notices
    # =========================================================================

    def send_status(self, action: str) -> ExportResult:
        """Post a start/stop notice to the sink."""
        if not self.enabled:
            logger.debug(f"No sink configured, skip {action} notice")
            return ExportResult(ExportStatus.SKIPPED, 'skipped, not sent')

        started = action == 'start'
        payload: dict[str, Any] = {
            'embeds': [{
                'title': 'Celltrace Logger STARTED' if started else 'Celltrace Logger STOPPED',
                'description': f"Session {'started' if started else 'finished'}",
                'color': STATUS_COLORS.get(action, EMBED_COLOR),
                'timestamp': _utc_now(),
            }]
        }
        try:
            self._deliver(payload)
        except SinkDeliveryError as e:
            logger.error(f"Error sending {action} notice: {e}")
            return ExportResult(ExportStatus.FAILED, str(e))
        logger.info(f"{action.capitalize()} notice sent")
        return ExportResult(ExportStatus.SENT, action)
