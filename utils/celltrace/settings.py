"""
Pipeline configuration loaded from an INI file on top of environment defaults.
"""

from __future__ import annotations

import configparser
import logging
import os
from pathlib import Path

import config as defaults

logger = logging.getLogger('celltrace.settings')


class PipelineConfig:
    """Pipeline configuration loaded from INI file or defaults."""

    def __init__(self):
        # Storage
        self.data_dir: str = defaults.DATA_DIR
        self.reference_dataset: str = defaults.REFERENCE_DATASET
        self.local_cache: str = defaults.LOCAL_CACHE
        self.max_retained_traces: int = defaults.MAX_RETAINED_TRACES

        # Ring / scheduling
        self.max_files: int = defaults.MAX_FILES
        self.events_per_file: int = defaults.EVENTS_PER_FILE
        self.scan_interval: float = defaults.SCAN_INTERVAL
        self.export_interval: float = defaults.EXPORT_INTERVAL
        self.resolve_workers: int = defaults.RESOLVE_WORKERS
        self.shutdown_grace: float = defaults.SHUTDOWN_GRACE

        # Remote geolocation
        self.geolocation_url: str = defaults.GEOLOCATION_URL
        self.geolocation_token: str = defaults.GEOLOCATION_TOKEN
        self.connect_timeout: float = defaults.CONNECT_TIMEOUT
        self.read_timeout: float = defaults.READ_TIMEOUT

        # Export sink
        self.sink_url: str = defaults.SINK_URL
        self.digest_events: int = defaults.DIGEST_EVENTS

        # Status server
        self.host: str = defaults.HOST
        self.port: int = defaults.PORT

    @property
    def cache_path(self) -> Path:
        """Durable cache file; defaults to ``cell_cache.csv`` in the data dir."""
        if self.local_cache:
            return Path(self.local_cache)
        return Path(self.data_dir) / 'cell_cache.csv'

    def load_from_file(self, filepath: str) -> bool:
        """Load configuration from INI file."""
        if not os.path.isfile(filepath):
            logger.warning(f"Config file not found: {filepath}")
            return False

        parser = configparser.ConfigParser()
        try:
            parser.read(filepath)

            # Pipeline section
            if parser.has_section('pipeline'):
                if parser.has_option('pipeline', 'scan_interval'):
                    self.scan_interval = parser.getfloat('pipeline', 'scan_interval')
                if parser.has_option('pipeline', 'export_interval'):
                    self.export_interval = parser.getfloat('pipeline', 'export_interval')
                if parser.has_option('pipeline', 'max_files'):
                    self.max_files = parser.getint('pipeline', 'max_files')
                if parser.has_option('pipeline', 'events_per_file'):
                    self.events_per_file = parser.getint('pipeline', 'events_per_file')
                if parser.has_option('pipeline', 'resolve_workers'):
                    self.resolve_workers = parser.getint('pipeline', 'resolve_workers')
                if parser.has_option('pipeline', 'shutdown_grace'):
                    self.shutdown_grace = parser.getfloat('pipeline', 'shutdown_grace')

            # Storage section
            if parser.has_section('storage'):
                if parser.has_option('storage', 'data_dir'):
                    self.data_dir = parser.get('storage', 'data_dir')
                if parser.has_option('storage', 'reference_dataset'):
                    self.reference_dataset = parser.get('storage', 'reference_dataset')
                if parser.has_option('storage', 'local_cache'):
                    self.local_cache = parser.get('storage', 'local_cache')
                if parser.has_option('storage', 'max_retained_traces'):
                    self.max_retained_traces = parser.getint('storage', 'max_retained_traces')

            # Geolocation section
            if parser.has_section('geolocation'):
                if parser.has_option('geolocation', 'url'):
                    self.geolocation_url = parser.get('geolocation', 'url')
                if parser.has_option('geolocation', 'token'):
                    self.geolocation_token = parser.get('geolocation', 'token')
                if parser.has_option('geolocation', 'connect_timeout'):
                    self.connect_timeout = parser.getfloat('geolocation', 'connect_timeout')
                if parser.has_option('geolocation', 'read_timeout'):
                    self.read_timeout = parser.getfloat('geolocation', 'read_timeout')

            # Sink section
            if parser.has_section('sink'):
                if parser.has_option('sink', 'url'):
                    self.sink_url = parser.get('sink', 'url').strip()
                if parser.has_option('sink', 'digest_events'):
                    self.digest_events = parser.getint('sink', 'digest_events')

            # Server section
            if parser.has_section('server'):
                if parser.has_option('server', 'host'):
                    self.host = parser.get('server', 'host')
                if parser.has_option('server', 'port'):
                    self.port = parser.getint('server', 'port')

            logger.info(f"Loaded configuration from {filepath}")
            return True

        except (configparser.Error, ValueError) as e:
            logger.error(f"Error loading config: {e}")
            return False

    def to_dict(self) -> dict:
        """Convert config to dictionary (the API token is never included)."""
        return {
            'data_dir': self.data_dir,
            'reference_dataset': self.reference_dataset,
            'local_cache': str(self.cache_path),
            'max_retained_traces': self.max_retained_traces,
            'max_files': self.max_files,
            'events_per_file': self.events_per_file,
            'scan_interval': self.scan_interval,
            'export_interval': self.export_interval,
            'resolve_workers': self.resolve_workers,
            'shutdown_grace': self.shutdown_grace,
            'geolocation_url': self.geolocation_url,
            'token_configured': bool(self.geolocation_token),
            'sink_configured': bool(self.sink_url),
            'digest_events': self.digest_events,
            'host': self.host,
            'port': self.port,
        }
