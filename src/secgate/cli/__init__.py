"""
CLI commands for SecGate.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from secgate import __version__
from secgate.cli.check import check_command, handle_check_command, register_check_parser
from secgate.cli.policies import (
    handle_policies_command,
    policies_command,
    register_policies_parser,
)
from secgate.logging import configure_logging

__all__ = [
    "build_parser",
    "check_command",
    "main",
    "policies_command",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secgate",
        description="Security policy checks and deployment gates",
    )
    parser.add_argument("--version", action="version", version=f"secgate {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logs")

    subparsers = parser.add_subparsers(dest="command")
    register_check_parser(subparsers)
    register_policies_parser(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Logs go to stderr so --format json output stays parseable.
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING, log_format="console")

    if args.command == "check":
        sys.exit(handle_check_command(args))

    if args.command == "policies":
        sys.exit(handle_policies_command(args))

    parser.print_help()
    sys.exit(0)
