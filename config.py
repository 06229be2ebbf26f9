"""Configuration settings for the celltrace service."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

# Application version
VERSION = "2.0.0"


def _get_env(key: str, default: str) -> str:
    """Get environment variable with default."""
    return os.environ.get(f'CELLTRACE_{key}', default)


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer with default."""
    try:
        return int(os.environ.get(f'CELLTRACE_{key}', str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float with default."""
    try:
        return float(os.environ.get(f'CELLTRACE_{key}', str(default)))
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean with default."""
    val = os.environ.get(f'CELLTRACE_{key}', '').lower()
    if val in ('true', '1', 'yes', 'on'):
        return True
    if val in ('false', '0', 'no', 'off'):
        return False
    return default


_BASE_DIR = Path(__file__).parent

# Logging configuration
_log_level_str = _get_env('LOG_LEVEL', 'INFO').upper()
LOG_LEVEL = getattr(logging, _log_level_str, logging.INFO)
LOG_FORMAT = _get_env('LOG_FORMAT', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')

# Status server settings
HOST = _get_env('HOST', '127.0.0.1')
PORT = _get_env_int('PORT', 5060)
DEBUG = _get_env_bool('DEBUG', False)

# Storage
DATA_DIR = _get_env('DATA_DIR', str(_BASE_DIR / 'instance'))
REFERENCE_DATASET = _get_env('REFERENCE_DATASET', str(_BASE_DIR / 'data' / 'reference_cells.csv'))
LOCAL_CACHE = _get_env('LOCAL_CACHE', '')  # empty -> <DATA_DIR>/cell_cache.csv
MAX_RETAINED_TRACES = _get_env_int('MAX_RETAINED_TRACES', 3)  # 0 -> overwrite undelivered merges

# Trace ring
MAX_FILES = _get_env_int('MAX_FILES', 10)
EVENTS_PER_FILE = _get_env_int('EVENTS_PER_FILE', 50)

# Scheduling
SCAN_INTERVAL = _get_env_float('SCAN_INTERVAL', 5.0)
EXPORT_INTERVAL = _get_env_float('EXPORT_INTERVAL', 60.0)
RESOLVE_WORKERS = _get_env_int('RESOLVE_WORKERS', 4)
SHUTDOWN_GRACE = _get_env_float('SHUTDOWN_GRACE', 5.0)

# Remote geolocation (Unwired Labs compatible)
GEOLOCATION_URL = _get_env('GEOLOCATION_URL', 'https://us1.unwiredlabs.com/v2/process.php')
GEOLOCATION_TOKEN = _get_env('GEOLOCATION_TOKEN', '')

# Export sink (webhook accepting multipart uploads)
SINK_URL = _get_env('SINK_URL', '')
DIGEST_EVENTS = _get_env_int('DIGEST_EVENTS', 5)

# Timeouts
CONNECT_TIMEOUT = _get_env_float('CONNECT_TIMEOUT', 10.0)
READ_TIMEOUT = _get_env_float('READ_TIMEOUT', 30.0)


def configure_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format=LOG_FORMAT,
        stream=sys.stderr
    )
    # Suppress Flask development server chatter below our level
    logging.getLogger('werkzeug').setLevel(LOG_LEVEL)
