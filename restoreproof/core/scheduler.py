"""Ordered, concurrency-bounded execution planning."""

from __future__ import annotations

import logging

from restoreproof.core.context import RunContext
from restoreproof.models.inventory import RestorePoint
from restoreproof.models.results import ExecutionGroup

logger = logging.getLogger(__name__)

CATCH_ALL_GROUP = "ungrouped"


class RecoveryScheduler:
    """Splits restore points into sequential groups.

    Groups run one after another (e.g. databases before application
    servers); members of a group run concurrently. Every restore point lands
    in exactly one group.
    """

    def __init__(self, context: RunContext) -> None:
        self._context = context

    def plan(
        self,
        restore_points: list[RestorePoint],
        groups: dict[int, list[str]] | None = None,
    ) -> list[ExecutionGroup]:
        """Build the ordered group list.

        Args:
            restore_points: Discovered restore points.
            groups: Optional mapping of group key to workload names or ids.

        Returns:
            Groups in execution order; unreferenced workloads form a trailing
            catch-all group.
        """
        if not groups:
            if not restore_points:
                return []
            return [ExecutionGroup(key=0, name="all", members=list(restore_points))]

        lookup: dict[str, RestorePoint] = {}
        for rp in restore_points:
            lookup.setdefault(rp.workload.name.lower(), rp)
            lookup.setdefault(rp.workload.id.lower(), rp)

        placed: set[str] = set()
        plan: list[ExecutionGroup] = []
        for key in sorted(groups):
            members = []
            for name in groups[key]:
                rp = lookup.get(name.strip().lower())
                if rp is None:
                    self._context.event(
                        logging.WARNING,
                        f"Group {key} references '{name}', which has no restore point in scope; skipping",
                    )
                    continue
                if rp.id in placed:
                    self._context.event(
                        logging.WARNING,
                        f"Group {key} references '{name}' again; keeping its earlier group",
                        workload=rp.workload.name,
                    )
                    continue
                placed.add(rp.id)
                members.append(rp)
            if members:
                plan.append(ExecutionGroup(key=key, name=f"group-{key}", members=members))

        remaining = [rp for rp in restore_points if rp.id not in placed]
        if remaining:
            next_key = (max(groups) + 1) if groups else 0
            plan.append(
                ExecutionGroup(key=next_key, name=CATCH_ALL_GROUP, members=remaining, synthetic=True)
            )

        for group in plan:
            self._context.event(
                logging.INFO,
                f"Planned {group.name}: {', '.join(group.workload_names)}",
            )
        return plan
