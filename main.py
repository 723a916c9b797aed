#!/usr/bin/env python3

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
_env_file = Path(__file__).parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

from regwatch.cli.commands.discovery import (
    register_commands as register_discovery_commands,
)


def _build_command_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m main",
        description="Regulatory content discovery: scheduled polling, classification and handoff.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True
    register_discovery_commands(subparsers)
    return parser


def _dispatch(args: argparse.Namespace) -> int:
    handler = getattr(args, "func", None)
    if handler is None:
        raise ValueError("No handler registered for parsed arguments.")
    return handler(args)


def main(argv: Sequence[str] | None = None) -> int:
    raw_args = list(sys.argv[1:] if argv is None else argv)

    command_parser = _build_command_parser()
    args = command_parser.parse_args(raw_args)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
