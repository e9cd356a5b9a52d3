"""Core verification engine.

This package provides:
- RunContext: Per-run identity, evidence log, sessions and results
- MetricsCollector: Thread-safe run metrics
- RunMetrics: Snapshot of collected metrics
- RestorePointCatalog: Latest restore point per workload
- PreflightValidator: Blocking and advisory readiness checks
- RecoveryScheduler: Ordered execution groups
- ResultAggregator: Verdicts, run summary and compliance score

The recovery executor, verification, cleanup and the ``run_verification``
entry point live in their own modules and are imported from there.
"""

from restoreproof.core.catalog import RestorePointCatalog
from restoreproof.core.context import RunContext
from restoreproof.core.errors import (
    ConfigurationError,
    DiscoveryError,
    PreflightBlockedError,
    RecoveryError,
    RestoreProofError,
)
from restoreproof.core.metrics import MetricsCollector, RunMetrics
from restoreproof.core.preflight import PreflightValidator
from restoreproof.core.scheduler import RecoveryScheduler
from restoreproof.core.scoring import ComplianceScorer, ResultAggregator

__all__ = [
    "ComplianceScorer",
    "ConfigurationError",
    "DiscoveryError",
    "MetricsCollector",
    "PreflightBlockedError",
    "PreflightValidator",
    "RecoveryError",
    "RecoveryScheduler",
    "RestorePointCatalog",
    "RestoreProofError",
    "ResultAggregator",
    "RunContext",
    "RunMetrics",
]
