"""
Status routes for a running cell trace pipeline.

This blueprint provides:
- Pipeline status and counters
- Cells detected in the trace files on disk
- On-demand partial export
- Cached position lookup for a single cell
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, jsonify

from utils.celltrace.export_sink import ExportStatus
from utils.celltrace.models import CellKey
from utils.celltrace.pipeline import CellTracePipeline
from utils.validation import validate_cell_key

logger = logging.getLogger('celltrace.routes')

celltrace_bp = Blueprint('celltrace', __name__, url_prefix='/celltrace')


def _pipeline() -> CellTracePipeline:
    return current_app.extensions['celltrace']


@celltrace_bp.route('/status', methods=['GET'])
def get_status() -> Response:
    """Pipeline counters and effective configuration."""
    pipeline = _pipeline()
    return jsonify({
        'status': 'success',
        'stats': pipeline.stats(),
        'config': pipeline.config.to_dict(),
    })


@celltrace_bp.route('/cells', methods=['GET'])
def get_cells() -> Response:
    """Unique cells found in the trace files, with cached positions."""
    cells = _pipeline().detected_cells()
    return jsonify({
        'status': 'success',
        'cells': cells,
        'count': len(cells),
        'located': sum(1 for c in cells if c['found']),
    })


@celltrace_bp.route('/export', methods=['POST'])
def export_now() -> Response:
    """Send the active trace file to the sink right away."""
    result = _pipeline().export_now()
    logger.info(f"On-demand export: {result.status.value}")
    code = 502 if result.status is ExportStatus.FAILED else 200
    return jsonify({'status': 'success' if code == 200 else 'error', 'export': result.to_dict()}), code


@celltrace_bp.route('/lookup/<cell_key>', methods=['GET'])
def lookup_cell(cell_key: str) -> Response:
    """
    Cached position of one cell (no remote query).

    The key is ``mcc-mnc-area-cell``, e.g. ``732-101-100-500``.
    """
    try:
        key = CellKey.parse(validate_cell_key(cell_key))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    location = _pipeline().cache.lookup(key)
    if location is None:
        return jsonify({'status': 'error', 'message': f"Cell {key} not in cache"}), 404

    return jsonify({
        'status': 'success',
        'key': str(key),
        'lat': location.lat,
        'lon': location.lon,
    })
