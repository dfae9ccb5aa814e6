"""
=============================================================================
TAKEAWAY CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:8080, MySQL on 127.0.0.1:3306)
    python -m takeaway

    # Listen on all interfaces with 8 workers
    python -m takeaway --host 0.0.0.0 --workers 8

    # Load a JSON config file, then override the port
    python -m takeaway --config takeaway.json --port 3000

=============================================================================
12-FACTOR APP: ENTRY POINT
=============================================================================

1. Read configuration: defaults < environment < config file < CLI flags
2. Construct the service
3. Start it, wait for SIGINT / SIGTERM, stop it

Signal handlers can only be installed from the main thread, which is why
they live here and not in the listener.

=============================================================================
"""

import argparse
import logging
import signal
import sys
import threading

from . import __version__
from .config import ServiceConfig
from .service import TakeawayService


logger = logging.getLogger("takeaway")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="takeaway",
        description="Takeaway ordering backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m takeaway                          # Run with defaults
  python -m takeaway --port 3000              # Custom port
  python -m takeaway --config takeaway.json   # Load a config file
        """
    )

    parser.add_argument(
        "--config", "-c",
        default=None,
        help="JSON config file (replaces TAKEAWAY_* environment settings)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (use 0.0.0.0 for containers)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 8080)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # EXECUTION ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Number of worker threads (default: CPU count)"
    )

    parser.add_argument(
        "--readers",
        type=int,
        default=None,
        help="Threads reading requests off connections (default: 8)"
    )

    parser.add_argument(
        "--stop-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the listener on shutdown (default: 5)"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"takeaway {__version__}"
    )

    return parser


def load_config(args: argparse.Namespace) -> ServiceConfig:
    """Resolve the config from file or environment, then apply CLI flags."""
    if args.config:
        config = ServiceConfig.from_file(args.config)
    else:
        config = ServiceConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.workers = args.workers
    if args.readers is not None:
        config.readers = args.readers
    if args.stop_timeout is not None:
        config.stop_timeout = args.stop_timeout
    if args.log_level is not None:
        config.log_level = args.log_level

    config.validate()
    return config


def setup_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("takeaway").setLevel(level)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        print(f"takeaway: invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level)

    service = TakeawayService(config)
    stop_event = threading.Event()

    def request_stop(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}")
        stop_event.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    try:
        service.start()
    except OSError as e:
        logger.error(f"Could not start: {e}")
        return 1

    return run(service, stop_event)


def run(service: TakeawayService, stop_event: threading.Event) -> int:
    """Serve until stop_event is set, then stop the service."""
    # Event.wait() with a timeout keeps the main thread responsive to signals
    while not stop_event.wait(1.0):
        pass

    # A late listener exit is logged by stop(); the exit status stays 0
    service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
