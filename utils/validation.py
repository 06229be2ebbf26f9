"""Input validation utilities for cache data and API endpoints."""

from __future__ import annotations

import re
from typing import Any

# mcc-mnc-area-cell, all numeric
_CELL_KEY_RE = re.compile(r'^\d{3}-\d{1,3}-\d+-\d+$')


def validate_latitude(lat: Any) -> float:
    """Validate and return latitude value."""
    try:
        value = float(lat)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid latitude: {lat}") from e
    if value != value or not -90 <= value <= 90:
        raise ValueError(f"Latitude must be between -90 and 90, got {lat}")
    return value


def validate_longitude(lon: Any) -> float:
    """Validate and return longitude value."""
    try:
        value = float(lon)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid longitude: {lon}") from e
    if value != value or not -180 <= value <= 180:
        raise ValueError(f"Longitude must be between -180 and 180, got {lon}")
    return value


def validate_cell_key(text: Any) -> str:
    """Validate a ``mcc-mnc-area-cell`` key string and return it stripped."""
    if not isinstance(text, str):
        raise ValueError("Cell key must be a string")
    text = text.strip()
    if not _CELL_KEY_RE.match(text):
        raise ValueError(f"Invalid cell key: {text!r} (expected mcc-mnc-area-cell)")
    return text
