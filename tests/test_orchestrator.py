"""
Tests for the per-tick orchestrator, the scan scheduler and replay sources.

Tests cover:
- Snapshot processing: trace order, key deduplication, dropped records
- Resolution scheduling through a submitter
- Scheduler tick ids and permission handling
- Replay source parsing
"""

import json
import os
import sys
import time
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.celltrace.models import CellKey, LteCellInfo, NrCellInfo, RadioType, WcdmaCellInfo
from utils.celltrace.orchestrator import ResolutionOrchestrator
from utils.celltrace.radio_source import RadioSource, ReplayRadioSource, raw_cell_from_dict
from utils.celltrace.scheduler import PeriodicTask, ScanScheduler
from utils.celltrace.trace_store import TraceStore, iter_observations

TS = '2024-05-01T10:00:00.000-05:00'


@pytest.fixture
def store(tmp_path):
    s = TraceStore(tmp_path, max_files=3, events_per_file=50)
    s.start()
    return s


@pytest.fixture
def cache():
    return Mock()


# =============================================================================
# Orchestrator
# =============================================================================

class TestProcessSnapshot:
    """Tests for ResolutionOrchestrator.process_snapshot()."""

    def test_empty_snapshot_is_noop(self, store, cache):
        orchestrator = ResolutionOrchestrator(cache, store)
        assert orchestrator.process_snapshot(1, []) == []
        assert orchestrator.process_snapshot(2, None) == []
        assert store.total_appended == 0
        cache.resolve.assert_not_called()

    def test_records_traced_in_order(self, store, cache):
        """Every registered cell is appended in snapshot order with a shared timestamp."""
        orchestrator = ResolutionOrchestrator(cache, store)
        cells = [
            LteCellInfo(True, '732', '101', tac=100, ci=500, rsrp=-90),
            LteCellInfo(False, '732', '101', tac=100, ci=501),
            WcdmaCellInfo(True, '732', '103', lac=2204, cid=12011, dbm=-80),
        ]

        observations = orchestrator.process_snapshot(7, cells, timestamp=TS)

        assert [o.cellid for o in observations] == [500, 12011]
        assert [o.cellid for o in iter_observations(store.active_path)] == [500, 12011]
        assert {o.timestamp for o in observations} == {TS}
        assert orchestrator.observations_dropped == 1
        assert orchestrator.snapshots_processed == 1

    def test_duplicate_keys_resolved_once(self, store, cache):
        """Each distinct key is resolved once per snapshot, but every record is traced."""
        orchestrator = ResolutionOrchestrator(cache, store)
        cell = LteCellInfo(True, '732', '101', tac=100, ci=500, rsrp=-90)

        orchestrator.process_snapshot(3, [cell, cell], timestamp=TS)

        assert store.total_appended == 2
        cache.resolve.assert_called_once_with(CellKey('732', '101', '100', '500'), RadioType.LTE, 3)

    def test_keyless_records_not_resolved(self, store, cache):
        orchestrator = ResolutionOrchestrator(cache, store)
        orchestrator.process_snapshot(1, [NrCellInfo(True, '732', '101')], timestamp=TS)

        assert store.total_appended == 1
        cache.resolve.assert_not_called()

    def test_resolution_submitted(self, store, cache):
        """With a submitter, resolution is handed off rather than run inline."""
        submit = Mock()
        orchestrator = ResolutionOrchestrator(cache, store, submit=submit)
        orchestrator.process_snapshot(4, [LteCellInfo(True, '732', '101', tac=1, ci=2)], timestamp=TS)

        submit.assert_called_once_with(cache.resolve, CellKey('732', '101', '1', '2'), RadioType.LTE, 4)
        cache.resolve.assert_not_called()

    def test_submit_after_shutdown_tolerated(self, store, cache):
        submit = Mock(side_effect=RuntimeError("cannot schedule new futures after shutdown"))
        orchestrator = ResolutionOrchestrator(cache, store, submit=submit)
        observations = orchestrator.process_snapshot(
            4, [LteCellInfo(True, '732', '101', tac=1, ci=2)], timestamp=TS
        )
        assert len(observations) == 1


# =============================================================================
# Scheduler
# =============================================================================

class FakeSource(RadioSource):
    def __init__(self, snapshot=None, permission=True):
        self.snapshot = snapshot or []
        self.permission = permission
        self.requests = 0

    def has_permission(self):
        return self.permission

    def request_cell_info(self, callback, on_error=None):
        self.requests += 1
        callback(self.snapshot)


class TestScanScheduler:
    """Tests for ScanScheduler."""

    def test_fire_increments_tick(self):
        orchestrator = Mock()
        snapshot = [LteCellInfo(True, '732', '101', tac=1, ci=2)]
        scheduler = ScanScheduler(FakeSource(snapshot), orchestrator, 5.0)

        assert scheduler.fire() == 1
        assert scheduler.fire() == 2
        orchestrator.process_snapshot.assert_called_with(2, snapshot)

    def test_no_permission_skips_tick(self):
        orchestrator = Mock()
        source = FakeSource(permission=False)
        scheduler = ScanScheduler(source, orchestrator, 5.0)

        assert scheduler.fire() == 1
        assert source.requests == 0
        orchestrator.process_snapshot.assert_not_called()

    def test_permission_error_caught(self):
        source = Mock()
        source.has_permission.return_value = True
        source.request_cell_info.side_effect = PermissionError("denied")
        scheduler = ScanScheduler(source, Mock(), 5.0)

        assert scheduler.fire() == 1

    def test_snapshot_handed_to_dispatch(self):
        """With a dispatcher the source callback only queues the snapshot."""
        orchestrator = Mock()
        dispatch = Mock()
        snapshot = [LteCellInfo(True, '732', '101', tac=1, ci=2)]
        scheduler = ScanScheduler(FakeSource(snapshot), orchestrator, 5.0, dispatch=dispatch)

        assert scheduler.fire() == 1

        dispatch.assert_called_once_with(orchestrator.process_snapshot, 1, snapshot)
        orchestrator.process_snapshot.assert_not_called()

    def test_dispatch_after_shutdown_drops_snapshot(self):
        orchestrator = Mock()
        dispatch = Mock(side_effect=RuntimeError("Pipeline is not running"))
        scheduler = ScanScheduler(FakeSource([]), orchestrator, 5.0, dispatch=dispatch)

        assert scheduler.fire() == 1
        orchestrator.process_snapshot.assert_not_called()

    def test_start_fires_immediately(self):
        orchestrator = Mock()
        scheduler = ScanScheduler(FakeSource(), orchestrator, 60.0)
        scheduler.start()
        try:
            deadline = time.time() + 2
            while scheduler.tick_id == 0 and time.time() < deadline:
                time.sleep(0.01)
            assert scheduler.tick_id == 1
        finally:
            scheduler.stop()


class TestPeriodicTask:
    """Tests for PeriodicTask."""

    def test_errors_do_not_stop_loop(self):
        action = Mock(side_effect=[RuntimeError("boom"), None, None, None, None, None])
        task = PeriodicTask('test-task', action, 0.01, initial_delay=0)
        task.start()
        deadline = time.time() + 2
        while task.runs < 2 and time.time() < deadline:
            time.sleep(0.01)
        task.stop()
        task.join(timeout=2)

        assert task.runs >= 2
        assert not task.is_alive()


# =============================================================================
# Replay source
# =============================================================================

class TestReplaySource:
    """Tests for JSON-lines replay."""

    def test_raw_cell_from_dict(self):
        cell = raw_cell_from_dict({'type': 'lte', 'registered': True, 'mcc': 732, 'mnc': '01', 'tac': 100, 'ci': 500})
        assert isinstance(cell, LteCellInfo)
        assert cell.mcc == '732'
        assert cell.mnc == '01'
        assert cell.rsrp == 2**31 - 1

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            raw_cell_from_dict({'type': 'gsm'})

    def test_replay_in_order_and_loops(self, tmp_path):
        path = tmp_path / 'snapshots.jsonl'
        path.write_text(
            json.dumps([{'type': 'lte', 'registered': True, 'mcc': '732', 'mnc': '101', 'tac': 1, 'ci': 1}]) + '\n'
            + 'not json\n'
            + json.dumps([{'type': 'gsm'}, {'type': 'wcdma', 'registered': True, 'mcc': '732', 'mnc': '103'}]) + '\n'
        )
        source = ReplayRadioSource(path)
        received = []

        for _ in range(3):
            source.request_cell_info(received.append)

        assert len(source) == 2
        assert [len(s) for s in received] == [1, 1, 1]
        assert isinstance(received[1][0], WcdmaCellInfo)
        assert received[2][0].ci == 1

    def test_replay_without_loop(self, tmp_path):
        path = tmp_path / 'snapshots.jsonl'
        path.write_text('[]\n')
        source = ReplayRadioSource(path, loop=False)
        assert source.next_snapshot() == []
        assert source.next_snapshot() == []
