"""
HTTP client for the remote cell geolocation service (Unwired Labs protocol).
"""

from __future__ import annotations

import logging
import math

import requests

from utils.celltrace.models import CellKey, Coordinate, RadioType

logger = logging.getLogger('celltrace.geolocation')

# Radio names expected by the remote service
_REMOTE_RADIO = {
    RadioType.NR: 'nr',
    RadioType.LTE: 'lte',
    RadioType.WCDMA: 'umts',
}


class GeolocationError(RuntimeError):
    """Exception raised when a geolocation request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GeolocationConnectionError(GeolocationError):
    """Exception raised when the geolocation service is unreachable."""
    pass


def remote_radio_name(radio: RadioType | None) -> str:
    """Map a radio type to the name the remote service expects."""
    return _REMOTE_RADIO.get(radio, 'gsm')


def build_request(token: str, key: CellKey, radio: RadioType | None) -> dict:
    """
    Build a single-cell geolocation request body.

    Raises:
        ValueError: If any identity component is not numeric
    """
    return {
        'token': token,
        'radio': remote_radio_name(radio),
        'mcc': int(key.mcc),
        'mnc': int(key.mnc),
        'cells': [{'lac': int(key.area), 'cid': int(key.cell)}],
    }


def parse_response(body: dict) -> Coordinate | None:
    """Extract a coordinate from a response body, None if absent or non-numeric."""
    lat = body.get('lat')
    lon = body.get('lon')
    if isinstance(lat, bool) or isinstance(lon, bool):
        return None
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return None
    if math.isnan(lat) or math.isnan(lon):
        return None
    return Coordinate(float(lat), float(lon))


class GeolocationClient:
    """Resolves one cell at a time against the remote geolocation API."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0
    ):
        """
        Initialize geolocation client.

        Args:
            url: Full endpoint URL (e.g., https://us1.unwiredlabs.com/v2/process.php)
            token: API token; without one every lookup is skipped
            connect_timeout: Connect timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self.url = url
        self.token = token or ''
        self.timeout = (connect_timeout, read_timeout)

    @property
    def enabled(self) -> bool:
        """True when a token is configured."""
        return bool(self.token)

    def _post(self, body: dict) -> dict:
        """
        Perform POST request to the geolocation service.

        Returns:
            Parsed JSON response

        Raises:
            GeolocationError: On HTTP errors or malformed bodies
            GeolocationConnectionError: If the service is unreachable
        """
        try:
            response = requests.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.ConnectionError as e:
            raise GeolocationConnectionError(f"Cannot connect to {self.url}: {e}")
        except requests.Timeout:
            raise GeolocationConnectionError(f"Request timed out after {self.timeout}s")
        except requests.HTTPError as e:
            raise GeolocationError(
                f"Geolocation service returned error: {e.response.status_code}",
                status_code=e.response.status_code
            )
        except requests.RequestException as e:
            raise GeolocationError(f"Request failed: {e}")
        except ValueError as e:
            raise GeolocationError(f"Malformed response body: {e}")

        if not isinstance(data, dict):
            raise GeolocationError("Malformed response body: not an object")
        return data

    def locate(self, key: CellKey, radio: RadioType | None = None) -> Coordinate | None:
        """
        Look up the position of one cell.

        Never raises: network, HTTP and parse failures are logged and
        reported as None.
        """
        if not self.enabled:
            logger.debug(f"No geolocation token configured, skipping lookup for {key}")
            return None

        try:
            body = build_request(self.token, key, radio)
        except ValueError:
            logger.debug(f"Non-numeric cell identity, skipping lookup for {key}")
            return None

        try:
            data = self._post(body)
        except GeolocationError as e:
            logger.warning(f"Geolocation lookup failed for {key}: {e}")
            return None

        location = parse_response(data)
        if location is None:
            logger.info(f"Cell {key} not found by geolocation service")
        return location

    def __repr__(self) -> str:
        return f"GeolocationClient({self.url})"
