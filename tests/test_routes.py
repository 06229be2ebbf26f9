"""
Tests for the celltrace status routes.

Tests cover:
- Status and config reporting
- Detected cell listing
- On-demand export
- Cached cell lookup
"""

import json
import os
import sys
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.celltrace.export_sink import ExportResult, ExportStatus
from utils.celltrace.location_cache import LocationCache
from utils.celltrace.models import CellKey, Coordinate
from utils.celltrace.settings import PipelineConfig


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def pipeline(tmp_path):
    """Pipeline double with a real config and cache."""
    pipeline = Mock()
    pipeline.config = PipelineConfig()
    pipeline.config.geolocation_token = 'secret-token'
    pipeline.cache = LocationCache(None, tmp_path / 'cell_cache.csv')
    pipeline.cache._memory[CellKey('732', '101', '100', '500')] = Coordinate(4.6097, -74.0817)
    pipeline.running = True
    pipeline.stats.return_value = {'running': True, 'tick_id': 12}
    pipeline.detected_cells.return_value = [
        {'key': '732-101-100-500', 'radio': 'lte', 'lat': 4.6097, 'lon': -74.0817, 'found': True},
        {'key': '732-103-2204-12011', 'radio': 'wcdma', 'lat': None, 'lon': None, 'found': False},
    ]
    return pipeline


@pytest.fixture
def app(pipeline):
    """Create Flask app around the pipeline double."""
    from app import create_app

    app = create_app(pipeline)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# Tests
# =============================================================================

class TestStatusRoutes:
    """Tests for read-only routes."""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['running'] is True

    def test_status(self, client):
        """GET /celltrace/status reports stats and redacted config."""
        response = client.get('/celltrace/status')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['stats']['tick_id'] == 12
        assert data['config']['token_configured'] is True
        assert 'secret-token' not in response.get_data(as_text=True)

    def test_cells(self, client):
        response = client.get('/celltrace/cells')

        data = json.loads(response.data)
        assert data['count'] == 2
        assert data['located'] == 1


class TestExportRoute:
    """Tests for POST /celltrace/export."""

    def test_export_sent(self, client, pipeline):
        pipeline.export_now.return_value = ExportResult(ExportStatus.SENT, '3 events')

        response = client.post('/celltrace/export')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['export']['status'] == 'sent'
        pipeline.export_now.assert_called_once_with()

    def test_export_skipped(self, client, pipeline):
        pipeline.export_now.return_value = ExportResult(ExportStatus.SKIPPED, 'skipped, not sent')

        response = client.post('/celltrace/export')

        assert response.status_code == 200
        assert json.loads(response.data)['export']['detail'] == 'skipped, not sent'

    def test_export_failed(self, client, pipeline):
        pipeline.export_now.return_value = ExportResult(ExportStatus.FAILED, 'Sink returned HTTP 500')

        response = client.post('/celltrace/export')

        assert response.status_code == 502
        assert json.loads(response.data)['status'] == 'error'


class TestLookupRoute:
    """Tests for GET /celltrace/lookup/<key>."""

    def test_cached_cell(self, client):
        response = client.get('/celltrace/lookup/732-101-100-500')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['lat'] == 4.6097
        assert data['lon'] == -74.0817

    def test_unknown_cell(self, client):
        response = client.get('/celltrace/lookup/732-101-100-999')
        assert response.status_code == 404

    def test_invalid_key(self, client):
        response = client.get('/celltrace/lookup/732-abc')
        assert response.status_code == 400
