"""Rollback controller: put hosts back on their previous (or a named) release.

Rollback reuses the planner and the rollout engine: it is a rollout whose
target is each host's previous release. By default all affected hosts of a
role form one batch, trading gradualism for speed.
"""

import logging

from deckhand.deploy.planner import Batch, RolloutPlan, RolloutPlanner
from deckhand.deploy.rollout import HostReport, RolloutEngine, RolloutReport
from deckhand.errors import UnknownRelease
from deckhand.state import StateStore
from deckhand.targets import TargetRegistry

logger = logging.getLogger(__name__)


class RollbackController:
    def __init__(self, registry: TargetRegistry, store: StateStore, engine: RolloutEngine, planner=None):
        self.registry = registry
        self.store = store
        self.engine = engine
        self.planner = planner or RolloutPlanner()

    async def rollback(self, host, role: str) -> HostReport:
        """Roll one host's role back to its previous release."""
        record = self.store.get_record(host.address, role)
        if record.previous is None:
            raise UnknownRelease(f"{host.address} has no previous {role} release to roll back to")
        batch = Batch(index=0, role=role, hosts=(host,), target=record.previous)
        [report] = await self.engine.run_batch(batch, rollback=True)
        return report

    def plan(self, version=None, batch_size=None, roles=None, hosts=None) -> tuple[RolloutPlan, list[tuple[str, str]]]:
        """Plan a rollback. Returns the plan and (host, role) pairs with nothing to roll back to."""
        registry = self.registry.filter(roles=roles, hosts=hosts) if roles or hosts else self.registry
        release = None
        if version is not None:
            release = self.store.find_release(version)
            if release is None:
                known = ", ".join(r.version for r in self.store.releases()) or "none"
                raise UnknownRelease(f"Unknown release '{version}'. Known releases: {known}")

        plans = []
        skipped = []
        for role in registry.roles:
            # Hosts of a role may sit on different previous releases; plan each group.
            groups = {}
            for host in registry.hosts_for(role.name):
                target = release or self.store.get_record(host.address, role.name).previous
                if target is None:
                    skipped.append((host.address, role.name))
                    continue
                groups.setdefault(target, []).append(host)
            for target, group in groups.items():
                plans.append(self.planner.plan(group, batch_size, target, roles=[role.name]))
        return RolloutPlan.concat(plans), skipped

    async def rollback_all(self, version=None, batch_size=None, roles=None, hosts=None) -> RolloutReport:
        plan, skipped = self.plan(version, batch_size, roles=roles, hosts=hosts)
        for address, role in skipped:
            logger.warning(f"[{address}] No previous {role} release; skipping")
        if not plan.batches:
            raise UnknownRelease("Nothing to roll back: no host has a previous release")
        return await self.engine.execute(plan, rollback=True)
