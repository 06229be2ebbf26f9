"""
Celltrace - passive serving-cell logger

Flask status application and command line entry point.
"""

from __future__ import annotations

import os
import signal
import sys
import threading

from flask import Flask, Response, jsonify

import config
from utils.celltrace.pipeline import CellTracePipeline
from utils.celltrace.radio_source import ReplayRadioSource
from utils.celltrace.settings import PipelineConfig


def create_app(pipeline: CellTracePipeline) -> Flask:
    """Build the Flask status app around a pipeline instance."""
    from routes import register_blueprints

    app = Flask(__name__)
    app.extensions['celltrace'] = pipeline
    register_blueprints(app)

    @app.route('/health')
    def health() -> Response:
        return jsonify({
            'status': 'healthy',
            'version': config.VERSION,
            'running': pipeline.running,
        })

    return app


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Celltrace - passive serving-cell logger',
        epilog='Environment variables: CELLTRACE_HOST, CELLTRACE_PORT, CELLTRACE_DATA_DIR, '
               'CELLTRACE_GEOLOCATION_TOKEN, CELLTRACE_SINK_URL, CELLTRACE_LOG_LEVEL'
    )
    parser.add_argument(
        '--config', '-c',
        default='celltrace.cfg',
        help='Configuration file (default: celltrace.cfg)'
    )
    parser.add_argument(
        '--replay', '-r',
        help='JSON-lines file of recorded cell snapshots to use as radio source'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        help=f'Port to run status server on (default: {config.PORT})'
    )
    parser.add_argument(
        '-H', '--host',
        help=f'Host to bind to (default: {config.HOST})'
    )
    parser.add_argument(
        '--sink',
        help='Webhook URL receiving trace exports'
    )
    parser.add_argument(
        '--no-server',
        action='store_true',
        help='Run the pipeline without the HTTP status server'
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        default=config.DEBUG,
        help='Enable debug logging'
    )
    args = parser.parse_args()

    config.configure_logging()
    if args.debug:
        import logging
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.replay:
        parser.error('a radio source is required: pass --replay <snapshots.jsonl>')

    # Load config file
    cfg = PipelineConfig()
    config_path = args.config
    if not os.path.isabs(config_path):
        config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), config_path)
    if os.path.isfile(config_path):
        cfg.load_from_file(config_path)

    # Override with command line args
    if args.port:
        cfg.port = args.port
    if args.host:
        cfg.host = args.host
    if args.sink:
        cfg.sink_url = args.sink.strip()

    try:
        source = ReplayRadioSource(args.replay)
    except OSError as e:
        print(f"Cannot read replay file {args.replay}: {e}", file=sys.stderr)
        sys.exit(1)

    pipeline = CellTracePipeline(cfg, source)

    print("=" * 50)
    print("  CELLTRACE // serving-cell logger")
    print("=" * 50)
    print()
    print(f"  Data dir:     {cfg.data_dir}")
    print(f"  Ring:         {cfg.max_files} files x {cfg.events_per_file} events")
    print(f"  Scan every:   {cfg.scan_interval}s")
    print(f"  Geolocation:  {'Enabled' if cfg.geolocation_token else 'Local cache only'}")
    print(f"  Sink:         {'Enabled' if cfg.sink_url else 'Disabled'}")
    print(f"  Replay:       {args.replay} ({len(source)} snapshots)")
    print()

    pipeline.start()
    stopped = threading.Event()

    # Handle shutdown
    def signal_handler(sig, frame):
        print("\nShutting down...")
        pipeline.stop()
        stopped.set()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print("  Press Ctrl+C to stop")
    print()

    try:
        if args.no_server:
            stopped.wait()
        else:
            app = create_app(pipeline)
            print(f"  Status on http://{cfg.host}:{cfg.port}/celltrace/status")
            app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
    except KeyboardInterrupt:
        pass
    finally:
        pipeline.stop()


if __name__ == '__main__':
    main()
