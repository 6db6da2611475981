"""Command-line entry for recurpay."""

from __future__ import annotations

import argparse
import json
import sys
from typing import NoReturn, Optional

from . import run_dispatch, run_server
from .core.exceptions import RecurpayError


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the recurpay CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="recurpay",
        description="recurpay - recurring payment schedules and reminders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m recurpay                       # Start server on default port (8080)
  python -m recurpay serve --port 3000     # Start server on port 3000
  python -m recurpay dispatch --window 15  # Send reminders due in the next 15 minutes
        """,
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="YAML config file (default: RECURPAY_CONFIG env var)",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or from RECURPAY_WEB_PORT env var)",
    )
    serve.add_argument("--host", metavar="HOST", help="Bind address (default: 0.0.0.0)")

    dispatch = subparsers.add_parser("dispatch", help="Send due reminders once and exit")
    dispatch.add_argument(
        "--window",
        type=int,
        default=15,
        metavar="MINUTES",
        help="Look-ahead window in minutes, 1-180 (default: 15)",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the recurpay CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.command == "dispatch":
        try:
            summary = run_dispatch(args)
        except RecurpayError as exc:
            print(f"Dispatch failed: {exc}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(summary))
        sys.exit(0)

    run_server(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
