"""
Tests for the remote geolocation client.

Tests cover:
- Request body construction
- Response parsing
- Error mapping (connection, timeout, HTTP status, malformed body)
- Behaviour without a token
"""

import os
import sys
from unittest.mock import Mock, patch

import pytest
import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.celltrace.geolocation import (
    GeolocationClient,
    GeolocationConnectionError,
    GeolocationError,
    build_request,
    parse_response,
    remote_radio_name,
)
from utils.celltrace.models import CellKey, Coordinate, RadioType

URL = 'https://geo.example.test/v2/process.php'
KEY = CellKey('732', '101', '100', '500')


def _response(body, status=200):
    response = Mock()
    response.status_code = status
    response.json.return_value = body
    if status >= 400:
        error = requests.HTTPError(f"{status} error")
        error.response = response
        response.raise_for_status.side_effect = error
    else:
        response.raise_for_status.return_value = None
    return response


class TestRequestBody:
    """Tests for request construction."""

    def test_build_request(self):
        """Identity components are sent as integers in a single-cell list."""
        body = build_request('tok', KEY, RadioType.LTE)
        assert body == {
            'token': 'tok',
            'radio': 'lte',
            'mcc': 732,
            'mnc': 101,
            'cells': [{'lac': 100, 'cid': 500}],
        }

    def test_radio_names(self):
        """WCDMA is sent as umts and unknown radios as gsm."""
        assert remote_radio_name(RadioType.NR) == 'nr'
        assert remote_radio_name(RadioType.WCDMA) == 'umts'
        assert remote_radio_name(None) == 'gsm'

    def test_non_numeric_identity(self):
        """A non-numeric component cannot be sent."""
        with pytest.raises(ValueError):
            build_request('tok', CellKey('732', '101', 'abc', '500'), RadioType.LTE)


class TestResponseParsing:
    """Tests for response parsing."""

    def test_numeric_coordinates(self):
        assert parse_response({'status': 'ok', 'lat': 4.6, 'lon': -74.1}) == Coordinate(4.6, -74.1)

    def test_missing_coordinates(self):
        """Error responses without lat/lon are not found."""
        assert parse_response({'status': 'error', 'message': 'No matches found'}) is None

    def test_non_numeric_coordinates(self):
        assert parse_response({'lat': '4.6', 'lon': -74.1}) is None
        assert parse_response({'lat': True, 'lon': False}) is None
        assert parse_response({'lat': float('nan'), 'lon': 1.0}) is None


class TestGeolocationClient:
    """Tests for GeolocationClient.locate()."""

    def test_disabled_without_token(self):
        """No token means no network traffic."""
        client = GeolocationClient(URL, '')
        with patch('utils.celltrace.geolocation.requests.post') as mock_post:
            assert client.locate(KEY, RadioType.LTE) is None
            mock_post.assert_not_called()
        assert client.enabled is False

    @patch('utils.celltrace.geolocation.requests.post')
    def test_locate_success(self, mock_post):
        """A successful lookup returns the coordinate."""
        mock_post.return_value = _response({'status': 'ok', 'lat': 4.6, 'lon': -74.1})
        client = GeolocationClient(URL, 'tok', connect_timeout=3, read_timeout=7)

        assert client.locate(KEY, RadioType.LTE) == Coordinate(4.6, -74.1)

        args, kwargs = mock_post.call_args
        assert args[0] == URL
        assert kwargs['json']['cells'] == [{'lac': 100, 'cid': 500}]
        assert kwargs['timeout'] == (3, 7)

    @patch('utils.celltrace.geolocation.requests.post')
    def test_locate_not_found(self, mock_post):
        mock_post.return_value = _response({'status': 'error', 'message': 'No matches found'})
        assert GeolocationClient(URL, 'tok').locate(KEY, RadioType.LTE) is None

    @patch('utils.celltrace.geolocation.requests.post')
    def test_locate_swallows_failures(self, mock_post):
        """Network failures are reported as None, never raised."""
        mock_post.side_effect = requests.ConnectionError("Connection refused")
        assert GeolocationClient(URL, 'tok').locate(KEY, RadioType.LTE) is None

    @patch('utils.celltrace.geolocation.requests.post')
    def test_connection_error_mapping(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("Connection refused")
        with pytest.raises(GeolocationConnectionError) as exc_info:
            GeolocationClient(URL, 'tok')._post({})
        assert 'Cannot connect' in str(exc_info.value)

    @patch('utils.celltrace.geolocation.requests.post')
    def test_timeout_mapping(self, mock_post):
        mock_post.side_effect = requests.Timeout()
        with pytest.raises(GeolocationConnectionError) as exc_info:
            GeolocationClient(URL, 'tok')._post({})
        assert 'timed out' in str(exc_info.value)

    @patch('utils.celltrace.geolocation.requests.post')
    def test_http_error_mapping(self, mock_post):
        mock_post.return_value = _response({}, status=429)
        with pytest.raises(GeolocationError) as exc_info:
            GeolocationClient(URL, 'tok')._post({})
        assert exc_info.value.status_code == 429

    @patch('utils.celltrace.geolocation.requests.post')
    def test_malformed_body(self, mock_post):
        response = _response(None)
        response.json.side_effect = ValueError("Expecting value")
        mock_post.return_value = response
        with pytest.raises(GeolocationError):
            GeolocationClient(URL, 'tok')._post({})

    @patch('utils.celltrace.geolocation.requests.post')
    def test_non_object_body(self, mock_post):
        mock_post.return_value = _response([1, 2])
        with pytest.raises(GeolocationError):
            GeolocationClient(URL, 'tok')._post({})
