"""CLI entrypoint for restoreproof verification runs."""

from __future__ import annotations

import argparse
import logging
import sys

from pydantic import ValidationError

from restoreproof.api.errors import ApiError
from restoreproof.cli.helpers import (
    _configure_logging,
    _interrupt_on_signal,
    _log_summary,
    _write_report,
)
from restoreproof.cli.options import ExitCode, LogFormat, build_arg_parser
from restoreproof.config.loader import Config, load_config, validate_run_config
from restoreproof.config.secrets import load_environment_secrets
from restoreproof.core.context import RunContext
from restoreproof.core.errors import PreflightBlockedError, RestoreProofError
from restoreproof.core.orchestrator import build_services, dry_run, run_verification
from restoreproof.models.results import RunSummary

logger = logging.getLogger(__name__)


def _load_run_config(args: argparse.Namespace) -> Config:
    """Load secrets and configuration, then reconfigure logging from it."""
    env_path = load_environment_secrets(args.env_file)
    if env_path is not None:
        logger.info("[BOOT] Loaded credentials from %s", env_path)
    config = load_config(args.config)
    _configure_logging(
        level=str(config.logging.level),
        log_format=str(args.log_format or config.logging.format),
    )
    validate_run_config(config)
    return config


def _execute(args: argparse.Namespace, config: Config) -> RunSummary:
    context = RunContext()
    services = build_services(config, context)
    with _interrupt_on_signal(context):
        if args.command == "run":
            return run_verification(services, config, context)
        return dry_run(services, config, context)


def run_command(args: argparse.Namespace) -> int:
    """Execute the `run` or `dry-run` command."""
    if args.command not in ("run", "dry-run"):
        raise ValueError(f"Unsupported command: {args.command}")

    try:
        config = _load_run_config(args)
        summary = _execute(args, config)
    except PreflightBlockedError as exc:
        for issue in exc.report.blocking:
            logger.error("[PREFLIGHT] %s: %s", issue.check, issue.message)
        return ExitCode.ABORTED
    except (RestoreProofError, ApiError, ValidationError, FileNotFoundError, PermissionError) as exc:
        logger.error("[BOOT] Run aborted: %s", exc)
        return ExitCode.ABORTED

    if args.report:
        _write_report(summary, args.report)
    _log_summary(summary)

    if summary.overall_success:
        return ExitCode.SUCCESS
    return ExitCode.ABORTED if summary.dry_run else ExitCode.RUN_FAILED


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint function."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return ExitCode.ABORTED

    # Configure a sane bootstrap logger before config loading.
    _configure_logging(level="INFO", log_format=str(args.log_format or LogFormat.READABLE.value))

    try:
        return int(run_command(args))
    except Exception as exc:
        logger.error("[BOOT] CLI execution failed: %s", exc)
        return ExitCode.RUN_FAILED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
