"""Run entry points.

``run_verification`` drives a full run: discovery, preflight, planning, then
each execution group in order with a bounded worker pool, and finally
aggregation. ``dry_run`` stops after planning and never submits a recovery.

Every workload runs recover, verify and cleanup on its own worker. A failure
in one workload is recorded on its session and does not affect its siblings;
cleanup runs for every session that reached submission.

Example:
    >>> services = build_services(config, context)
    >>> summary = run_verification(services, config, context)
    >>> summary.overall_success
    True
"""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta

from restoreproof.api.errors import ApiError
from restoreproof.api.retry import RetryPolicy
from restoreproof.api.veeam import VeeamRestAPI
from restoreproof.api.vsphere import VSphereRestAPI
from restoreproof.config.loader import Config, validate_recovery_config
from restoreproof.core.catalog import RestorePointCatalog
from restoreproof.core.cleanup import CleanupManager
from restoreproof.core.context import RunContext
from restoreproof.core.errors import PreflightBlockedError
from restoreproof.core.executor import RecoveryExecutor
from restoreproof.core.preflight import PreflightValidator
from restoreproof.core.probes import CustomProbe, NetworkProbe, load_custom_probe
from restoreproof.core.scheduler import RecoveryScheduler
from restoreproof.core.scoring import ResultAggregator
from restoreproof.core.verification import VerificationRunner
from restoreproof.interfaces.backup import BackupCatalogAPI, RecoveryControlAPI
from restoreproof.interfaces.hypervisor import HypervisorAPI
from restoreproof.models.inventory import (
    ClusterInfo,
    IsolatedNetwork,
    RestorePoint,
    StorageTarget,
    Workload,
)
from restoreproof.models.results import PreflightReport, RunSummary
from restoreproof.models.session import RecoverySession, RecoveryStrategy, SessionState

logger = logging.getLogger(__name__)


@dataclass
class RecoveryServices:
    """The three control-plane capabilities a run depends on."""

    catalog: BackupCatalogAPI
    recovery: RecoveryControlAPI
    hypervisor: HypervisorAPI


@dataclass
class _Preparation:
    restore_points: list[RestorePoint]
    known_workloads: list[Workload]
    network: IsolatedNetwork | None
    report: PreflightReport


def build_services(config: Config, context: RunContext) -> RecoveryServices:
    """Connect the REST adapters described by ``config``.

    API retries are counted in the run's metrics by failure kind.
    """
    policy = dataclasses.replace(
        RetryPolicy.for_profile(config.api.retry_profile),
        backoff_cap_seconds=config.api.backoff_cap_seconds,
    )
    refresh_margin = timedelta(seconds=config.api.token_refresh_margin_seconds)

    def on_retry(error: ApiError) -> None:
        context.metrics.record_api_retry(error.kind.value)

    backup = VeeamRestAPI.connect(
        config.backup.url,
        config.backup.username,
        config.backup.password or "",
        verify_tls=config.backup.verify_tls,
        timeout=config.backup.timeout,
        api_version=config.backup.api_version,
        policy=policy,
        refresh_margin=refresh_margin,
        on_retry=on_retry,
    )
    hypervisor = VSphereRestAPI.connect(
        config.hypervisor.url,
        config.hypervisor.username,
        config.hypervisor.password or "",
        verify_tls=config.hypervisor.verify_tls,
        timeout=config.hypervisor.timeout,
        policy=policy,
        refresh_margin=refresh_margin,
        on_retry=on_retry,
    )
    return RecoveryServices(catalog=backup, recovery=backup, hypervisor=hypervisor)


def resolve_network(
    hypervisor: HypervisorAPI,
    name: str,
    segment_id: str | None,
    context: RunContext,
) -> IsolatedNetwork | None:
    """Look up the isolated network once per run.

    A configured segment id fills in for one the hypervisor does not report.
    """
    try:
        network = hypervisor.find_network(name)
    except ApiError as e:
        context.event(logging.ERROR, f"Isolated network lookup failed: {e}")
        return None
    if network is None:
        context.event(logging.ERROR, f"Isolated network '{name}' not found")
        return None
    if not network.segment_id and segment_id:
        network = network.model_copy(update={"segment_id": segment_id})
    context.event(logging.INFO, f"Resolved isolated network '{network.name}' ({network.id})")
    return network


def _fetch_clusters(hypervisor: HypervisorAPI, context: RunContext) -> list[ClusterInfo]:
    try:
        return hypervisor.list_clusters()
    except ApiError as e:
        context.event(logging.WARNING, f"Cluster inventory unavailable: {e}")
        return []


def _fetch_storage(hypervisor: HypervisorAPI, context: RunContext) -> list[StorageTarget]:
    try:
        return hypervisor.list_storage_targets()
    except ApiError as e:
        context.event(logging.WARNING, f"Storage inventory unavailable: {e}")
        return []


def _prepare(services: RecoveryServices, config: Config, context: RunContext) -> _Preparation:
    """Discovery, network resolution and preflight."""
    recovery = config.recovery
    catalog = RestorePointCatalog(services.catalog, context)
    points = catalog.discover(config.scope.jobs, config.scope.workloads)

    network = resolve_network(
        services.hypervisor, recovery.isolated_network, recovery.isolated_segment_id, context
    )
    clusters = _fetch_clusters(services.hypervisor, context)
    storage = None
    if recovery.strategy == RecoveryStrategy.FULL_COPY:
        storage = _fetch_storage(services.hypervisor, context)

    validator = PreflightValidator(context, reachability_probe=services.recovery.probe)
    report = validator.validate(
        clusters=clusters,
        network=network,
        restore_points=points,
        jobs=catalog.jobs,
        concurrency_cap=recovery.max_concurrent_vms,
        max_age_days=config.preflight.max_restore_point_age_days,
        strategy=recovery.strategy,
        storage=storage,
        storage_target=recovery.storage_target,
    )
    return _Preparation(
        restore_points=points,
        known_workloads=catalog.known_workloads,
        network=network,
        report=report,
    )


def _aggregator(config: Config, context: RunContext) -> ResultAggregator:
    return ResultAggregator(
        context,
        rto_target_minutes=config.scoring.rto_target_minutes,
        automated=config.scoring.automated,
        known_workloads=config.scoring.known_workloads,
        known_platforms=config.scoring.known_platforms,
    )


class _WorkloadPipeline:
    """Recover, verify and clean up one workload at a time."""

    def __init__(
        self,
        executor: RecoveryExecutor,
        verifier: VerificationRunner,
        cleanup: CleanupManager,
        config: Config,
    ) -> None:
        self._executor = executor
        self._verifier = verifier
        self._cleanup = cleanup
        self._config = config

    def __call__(self, restore_point: RestorePoint, network: IsolatedNetwork) -> RecoverySession:
        session = self._executor.new_session(restore_point, network)
        try:
            self._executor.recover(session)
            if session.state == SessionState.RUNNING:
                self._verifier.verify(session, self._config.verification)
        except Exception as e:
            logger.exception("[RECOVERY] Unexpected error for %s", restore_point.workload.name)
            session.fail(f"Unexpected error: {e}")
        finally:
            if session.reached_submitted:
                self._cleanup.cleanup(session)
        return session


def run_verification(
    services: RecoveryServices,
    config: Config,
    context: RunContext | None = None,
    custom_probe: CustomProbe | None = None,
    probes: NetworkProbe | None = None,
) -> RunSummary:
    """Run a full verification pass.

    Args:
        services: Control-plane adapters.
        config: Run configuration.
        context: Run context; a fresh one is created if omitted.
        custom_probe: Custom verification probe; defaults to the one named
            in ``config.verification.custom_probe``.
        probes: Network probe implementation.

    Returns:
        The run summary. Per-workload and cleanup failures are reported in it.

    Raises:
        ConfigurationError: Before any remote call, for unusable settings.
        DiscoveryError: If nothing in scope has a restore point.
        PreflightBlockedError: If preflight found a blocking issue.
    """
    context = context or RunContext()
    validate_recovery_config(config.recovery)
    if custom_probe is None and config.verification.custom_probe:
        custom_probe = load_custom_probe(config.verification.custom_probe)

    context.event(
        logging.INFO,
        f"Run {context.run_id} started ({config.recovery.strategy.value}, "
        f"max {config.recovery.max_concurrent_vms} concurrent)",
    )
    prepared = _prepare(services, config, context)
    if not prepared.report.success:
        raise PreflightBlockedError(prepared.report)
    plan = RecoveryScheduler(context).plan(prepared.restore_points, config.scope.groups)
    pipeline = _WorkloadPipeline(
        RecoveryExecutor(services.recovery, services.hypervisor, context, config.recovery),
        VerificationRunner(services.hypervisor, context, probes=probes, custom_probe=custom_probe),
        CleanupManager(services.recovery, services.hypervisor, context, config.recovery),
        config,
    )

    for group in plan:
        if context.interrupt.is_set():
            context.event(logging.WARNING, f"Interrupted, not starting {group.name}")
            break
        context.event(logging.INFO, f"Starting {group.name} ({len(group.members)} workload(s))")
        workers = min(config.recovery.max_concurrent_vms, len(group.members))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"restoreproof-{group.name}") as pool:
            futures = [pool.submit(pipeline, rp, prepared.network) for rp in group.members]
            for future in futures:
                future.result()
        context.event(logging.INFO, f"Finished {group.name}")

    return _aggregator(config, context).aggregate(
        results=context.results,
        sessions=context.sessions,
        strategy=config.recovery.strategy,
        groups=plan,
        preflight=prepared.report,
        known=prepared.known_workloads,
    )


def dry_run(
    services: RecoveryServices,
    config: Config,
    context: RunContext | None = None,
) -> RunSummary:
    """Discovery, preflight and planning only; never submits a recovery.

    A blocking preflight result is reported in the summary rather than raised.
    """
    context = context or RunContext()
    validate_recovery_config(config.recovery)
    context.event(logging.INFO, f"Dry run {context.run_id} started")

    prepared = _prepare(services, config, context)
    plan = RecoveryScheduler(context).plan(prepared.restore_points, config.scope.groups)

    return _aggregator(config, context).aggregate(
        results=[],
        sessions=[],
        strategy=config.recovery.strategy,
        groups=plan,
        preflight=prepared.report,
        known=prepared.known_workloads,
        dry_run=True,
    )
