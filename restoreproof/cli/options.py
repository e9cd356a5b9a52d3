"""CLI option models and parser helpers."""

from __future__ import annotations

import argparse
from enum import IntEnum, StrEnum


class LogFormat(StrEnum):
    """CLI log formatter mode."""

    READABLE = "readable"
    JSON = "json"


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    RUN_FAILED = 1
    ABORTED = 2


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config file (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Dotenv file holding credentials (default: RESTOREPROOF_ENV_FILE or .env)",
    )
    parser.add_argument("--report", type=str, default=None, help="Write the run summary JSON to this path")
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=[fmt.value for fmt in LogFormat],
        help="Terminal log format (default: logging.format from config)",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(prog="restoreproof", description="Backup recoverability verification")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Recover, verify and clean up every workload in scope")
    _add_common_arguments(run_parser)

    dry_run_parser = subparsers.add_parser(
        "dry-run",
        help="Run discovery, preflight and planning without submitting any recovery",
    )
    _add_common_arguments(dry_run_parser)

    return parser
