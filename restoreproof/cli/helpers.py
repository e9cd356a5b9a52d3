"""Shared helper utilities for the CLI."""

from __future__ import annotations

import contextlib
import json
import logging
import signal
from collections.abc import Iterator
from pathlib import Path

from restoreproof.cli.options import LogFormat
from restoreproof.core.context import RunContext
from restoreproof.models.results import RunSummary

logger = logging.getLogger(__name__)


class _JSONLogFormatter(logging.Formatter):
    """Compact JSON formatter for machine-readable logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


def _configure_logging(level: str = "INFO", log_format: str = LogFormat.READABLE.value) -> None:
    """Configure process-wide logging."""
    normalized_level = level.upper()
    resolved_level = getattr(logging, normalized_level, logging.INFO)
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not getattr(h, "_restoreproof_handler", False)]

    handler = logging.StreamHandler()
    handler._restoreproof_handler = True  # type: ignore[attr-defined]
    if log_format == LogFormat.JSON.value:
        formatter: logging.Formatter = _JSONLogFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(resolved_level)

    # Per-request transport logs drown out the run's own progress.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@contextlib.contextmanager
def _interrupt_on_signal(context: RunContext) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a run interrupt for the duration of the block.

    Waiting workloads fail and still clean up; groups not yet started are
    skipped. A second signal falls through to the default handler.
    """

    def handler(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.warning("[BOOT] Received %s, interrupting run; cleanup will still run", sig_name)
        context.interrupt.set()
        signal.signal(signum, previous.get(signum, signal.SIG_DFL))

    previous: dict[int, object] = {}
    try:
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, handler)
    except ValueError:
        # Can only set handlers in main thread
        logger.debug("Could not install signal handlers (not main thread)")
    try:
        yield
    finally:
        for signum, original in previous.items():
            signal.signal(signum, original)


def _write_report(summary: RunSummary, path: str | Path) -> Path:
    """Write the summary as JSON for reporting consumers."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
    logger.info("[REPORT] Run summary written to %s", target)
    return target


def _log_summary(summary: RunSummary) -> None:
    if summary.dry_run:
        logger.info(
            "[REPORT] Dry run: %s planned group(s), %s blocking and %s advisory preflight issue(s)",
            len(summary.groups),
            len(summary.preflight.blocking),
            len(summary.preflight.advisory),
        )
        for index, members in enumerate(summary.groups, start=1):
            logger.info("[REPORT]   %s. %s", index, ", ".join(members))
        return

    for verdict in summary.workloads:
        logger.info(
            "[REPORT] %-30s %s  %s/%s tests  state=%s%s",
            verdict.workload_name,
            "PASS" if verdict.passed else "FAIL",
            verdict.tests_passed,
            verdict.tests_total,
            verdict.final_state.value,
            f"  error={verdict.error}" if verdict.error else "",
        )
    if summary.cleanup_failures:
        logger.error("[REPORT] Cleanup failed for: %s", ", ".join(summary.cleanup_failures))
    if summary.compliance is not None:
        logger.info(
            "[REPORT] Overall %s, compliance score %.1f (%s)",
            "PASS" if summary.overall_success else "FAIL",
            summary.compliance.overall_score,
            summary.compliance.grade,
        )
