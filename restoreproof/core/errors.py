"""Run-level error taxonomy.

Only configuration, discovery and blocking preflight errors escape a run.
Per-workload failures are captured on the session and cleanup failures are
recorded; neither raises past the orchestrator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from restoreproof.models.results import PreflightReport


class RestoreProofError(Exception):
    """Base class for run-aborting errors."""


class ConfigurationError(RestoreProofError):
    """Invalid scope or missing strategy-required parameters."""


class DiscoveryError(RestoreProofError):
    """No jobs or no restore points in scope."""


class PreflightBlockedError(RestoreProofError):
    """Preflight reported at least one blocking issue."""

    def __init__(self, report: PreflightReport) -> None:
        messages = "; ".join(issue.message for issue in report.blocking)
        super().__init__(f"Preflight blocked the run: {messages}")
        self.report = report


class RecoveryError(Exception):
    """A single workload's recovery failed."""


class PollTimeoutError(RecoveryError):
    """A bounded wait reached its deadline."""


class PollCancelledError(RecoveryError):
    """A bounded wait was interrupted by the operator."""
