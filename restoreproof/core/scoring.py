"""Result aggregation and the compliance score.

The score is a weighted 0-100 figure built from five components. The weights
are fixed so that scores from different runs are comparable:

    coverage    25  tested workloads (and platforms) vs. known
    pass_rate   30  workloads whose verification fully passed
    rto         20  workloads running within the RTO target
    recency     15  age of this run's evidence
    automation  10  whether runs are scheduled

When no RTO target is configured the ``rto`` component is left out and the
remaining weights are scaled back up to 100.

Example:
    >>> scorer = ComplianceScorer()
    >>> score = scorer.score(coverage=100, pass_rate=100, rto=None, recency=100, automation=0)
    >>> score.grade
    'B'
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from restoreproof.core.context import RunContext
from restoreproof.models.inventory import Workload
from restoreproof.models.results import (
    ComplianceScore,
    ExecutionGroup,
    PreflightReport,
    RunSummary,
    VerificationResult,
    WorkloadVerdict,
)
from restoreproof.models.session import RecoverySession, RecoveryStrategy, SessionState

logger = logging.getLogger(__name__)

SCORE_WEIGHTS: dict[str, float] = {
    "coverage": 25.0,
    "pass_rate": 30.0,
    "rto": 20.0,
    "recency": 15.0,
    "automation": 10.0,
}

GRADE_THRESHOLDS: list[tuple[float, str]] = [(90.0, "A"), (80.0, "B"), (70.0, "C"), (60.0, "D")]

# (max age in days, recency score)
RECENCY_STEPS: list[tuple[float, float]] = [(7.0, 100.0), (30.0, 75.0), (90.0, 40.0)]


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def recency_score(age_days: float) -> float:
    for limit, value in RECENCY_STEPS:
        if age_days <= limit:
            return value
    return 0.0


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return min(100.0, 100.0 * part / whole)


class ComplianceScorer:
    """Combines component scores (each 0-100) into a graded overall score."""

    def __init__(self, weights: dict[str, float] | None = None) -> None:
        self.weights = dict(weights or SCORE_WEIGHTS)

    def score(
        self,
        coverage: float,
        pass_rate: float,
        rto: float | None,
        recency: float,
        automation: float,
    ) -> ComplianceScore:
        components = {
            "coverage": coverage,
            "pass_rate": pass_rate,
            "rto": rto,
            "recency": recency,
            "automation": automation,
        }
        applied = {name: components[name] for name in self.weights if components.get(name) is not None}
        total_weight = sum(self.weights[name] for name in applied)
        weights = {name: 100.0 * self.weights[name] / total_weight for name in applied} if total_weight else {}

        overall = sum(applied[name] * weights[name] / 100.0 for name in applied)
        overall = round(max(0.0, min(100.0, overall)), 2)
        return ComplianceScore(
            overall_score=overall,
            grade=grade_for(overall),
            components={name: round(value, 2) for name, value in applied.items()},
            weights={name: round(value, 4) for name, value in weights.items()},
        )


class ResultAggregator:
    """Rolls sessions and verification results up into a ``RunSummary``.

    Args:
        context: Run context providing identity, events and metrics.
        rto_target_minutes: Recovery time objective; None disables the RTO component.
        automated: Whether this run was scheduled rather than started by hand.
        known_workloads: Total workloads in the estate; defaults to those discovered.
        known_platforms: Total guest platforms in the estate, if tracked.
    """

    def __init__(
        self,
        context: RunContext,
        rto_target_minutes: float | None = None,
        automated: bool = False,
        known_workloads: int | None = None,
        known_platforms: int | None = None,
        scorer: ComplianceScorer | None = None,
    ) -> None:
        self._context = context
        self._rto_target_minutes = rto_target_minutes
        self._automated = automated
        self._known_workloads = known_workloads
        self._known_platforms = known_platforms
        self._scorer = scorer or ComplianceScorer()

    def verdict(
        self,
        session: RecoverySession,
        results: list[VerificationResult],
        group: str | None = None,
    ) -> WorkloadVerdict:
        own = [r for r in results if r.workload_id == session.workload.id]
        passed_tests = sum(1 for r in own if r.passed)
        rto_met = None
        if self._rto_target_minutes is not None:
            seconds = session.recovery_seconds
            rto_met = seconds is not None and seconds <= self._rto_target_minutes * 60
        return WorkloadVerdict(
            workload_id=session.workload.id,
            workload_name=session.workload.name,
            restore_point_id=session.restore_point.id,
            restore_point_created_at=session.restore_point.created_at,
            group=group,
            strategy=session.strategy,
            final_state=session.state,
            passed=session.error is None and bool(own) and passed_tests == len(own),
            tests_total=len(own),
            tests_passed=passed_tests,
            recovery_seconds=session.recovery_seconds,
            rto_met=rto_met,
            error=session.error,
            cleanup_error=session.cleanup_error,
        )

    def aggregate(
        self,
        results: list[VerificationResult],
        sessions: list[RecoverySession],
        strategy: RecoveryStrategy,
        groups: list[ExecutionGroup] | None = None,
        preflight: PreflightReport | None = None,
        known: list[Workload] | None = None,
        dry_run: bool = False,
        as_of: datetime | None = None,
    ) -> RunSummary:
        """Build the run summary.

        Args:
            results: Every verification result of the run.
            sessions: Every session created during the run.
            strategy: Strategy the run used.
            groups: Execution plan, used to label verdicts.
            preflight: Preflight report.
            known: Workloads discovered in scope, the default coverage denominator.
            dry_run: Whether the run only planned.
            as_of: Reference time for recency; defaults to the run finish.
        """
        groups = groups or []
        group_of = {rp.workload.id: group.name for group in groups for rp in group.members}

        verdicts = [self.verdict(s, results, group_of.get(s.workload.id)) for s in sessions]
        cleanup_failures = [s.workload.name for s in sessions if s.state == SessionState.CLEANUP_FAILED]
        finished_at = self._context.now()

        compliance = None
        if not dry_run:
            compliance = self._score(verdicts, sessions, known or [], finished_at, as_of or finished_at)

        preflight = preflight or PreflightReport()
        if dry_run:
            overall_success = preflight.success
        else:
            overall_success = bool(verdicts) and all(v.passed for v in verdicts)
        metrics: dict[str, Any] = self._context.metrics.get_metrics().model_dump(mode="json")

        summary = RunSummary(
            run_id=self._context.run_id,
            started_at=self._context.started_at,
            finished_at=finished_at,
            strategy=strategy,
            dry_run=dry_run,
            overall_success=overall_success,
            workloads=verdicts,
            results=results,
            groups=[group.workload_names for group in groups],
            cleanup_failures=cleanup_failures,
            preflight=preflight,
            compliance=compliance,
            metrics=metrics,
            events=self._context.events,
        )
        if compliance is not None:
            logger.info(
                "Run %s: %s/%s workload(s) passed, score %.1f (%s)",
                summary.run_id,
                sum(1 for v in verdicts if v.passed),
                len(verdicts),
                compliance.overall_score,
                compliance.grade,
            )
        return summary

    def _score(
        self,
        verdicts: list[WorkloadVerdict],
        sessions: list[RecoverySession],
        known: list[Workload],
        finished_at: datetime,
        as_of: datetime,
    ) -> ComplianceScore:
        tested = len(verdicts)
        known_count = self._known_workloads if self._known_workloads is not None else len(known)
        coverage = _percent(tested, max(known_count, tested))
        if self._known_platforms:
            platforms = {s.workload.os_hint.lower() for s in sessions if s.workload.os_hint}
            coverage = (coverage + _percent(len(platforms), self._known_platforms)) / 2

        pass_rate = _percent(sum(1 for v in verdicts if v.passed), tested)

        rto = None
        if self._rto_target_minutes is not None:
            rto = _percent(sum(1 for v in verdicts if v.rto_met), tested)

        age_days = max(0.0, (as_of - finished_at).total_seconds() / 86400)

        return self._scorer.score(
            coverage=coverage,
            pass_rate=pass_rate,
            rto=rto,
            recency=recency_score(age_days),
            automation=100.0 if self._automated else 0.0,
        )
