"""CalendarLink entry point.

Changes:
  - 2026-02-09: Added ``serve`` subcommand (API server via uvicorn).
  - 2026-02-07: Rich logging for console output.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from calendarlink import __version__
from calendarlink.config import get_settings
from calendarlink.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _installed_version() -> str:
    try:
        return get_version("calendarlink")
    except PackageNotFoundError:
        return __version__


def main() -> None:
    """Main entry point."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="CalendarLink - delegated calendar connection lifecycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  calendarlink serve                 Start the API server
  calendarlink serve --port 9000     Start on another port
  calendarlink serve --dev           Start with auto-reload
""",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {_installed_version()}",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )

    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Start the API server")
    serve.add_argument(
        "--host", default=settings.host, help=f"Bind host (default: {settings.host})"
    )
    serve.add_argument(
        "--port", type=int, default=settings.port, help=f"Bind port (default: {settings.port})"
    )
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")

    args = parser.parse_args()
    setup_logging(level=args.log_level)

    if args.command != "serve":
        parser.print_help()
        return

    from calendarlink.api.serve import run_server

    try:
        run_server(host=args.host, port=args.port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
