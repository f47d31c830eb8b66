"""Rollout engine: run a plan batch by batch with zero-downtime cutover.

Batches run sequentially; hosts inside a batch run concurrently, each in its
own task holding its transport session. Per host:

    PENDING -> PULLING -> STARTING -> HEALTH_CHECKING
        -> CUTTING_OVER -> DRAINING -> STOPPED        (healthy)
        -> ROLLING_BACK -> ROLLED_BACK                 (unhealthy)
        -> ABORTED                                     (transport retries exhausted)

Batch N+1 never starts until every host of batch N is terminal. Any
rolled-back host halts the rollout after its batch; any aborted host halts it
with status ``aborted``. External abort requests are honored only between
batches so no batch is left half cut over.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from deckhand.config.types import RetryConfig
from deckhand.deploy.lifecycle import LifecycleDriver, TransitionResult
from deckhand.deploy.planner import Batch, RolloutPlan
from deckhand.deploy.proxy import ProxyReconciler
from deckhand.deploy.states import HostState
from deckhand.errors import TransportError
from deckhand.image import Release
from deckhand.retry import Backoff, Clock, RetryState

logger = logging.getLogger(__name__)


class RolloutStatus(str, Enum):
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class HostReport:
    """Progress of one host through one batch."""

    host: str
    role: str
    target: Release
    state: HostState = HostState.PENDING
    history: list[HostState] = field(default_factory=lambda: [HostState.PENDING])
    attempts: int = 0
    error: str | None = None

    def advance(self, state: HostState) -> None:
        self.state = state
        self.history.append(state)


@dataclass
class RolloutReport:
    status: RolloutStatus
    hosts: list[HostReport] = field(default_factory=list)
    skipped_batches: list[Batch] = field(default_factory=list)
    message: str = ""

    @property
    def succeeded(self) -> list[HostReport]:
        return [h for h in self.hosts if h.state == HostState.STOPPED]

    @property
    def rolled_back(self) -> list[HostReport]:
        return [h for h in self.hosts if h.state == HostState.ROLLED_BACK]

    @property
    def indeterminate(self) -> list[HostReport]:
        return [h for h in self.hosts if not h.state.terminal or h.state == HostState.ABORTED]

    def summary_lines(self) -> list[str]:
        lines = [f"Status: {self.status.value}"]
        if self.message:
            lines.append(self.message)
        for label, reports in (
            ("Deployed", self.succeeded),
            ("Rolled back", self.rolled_back),
            ("Needs manual check", self.indeterminate),
        ):
            if reports:
                lines.append(f"{label}:")
                for r in reports:
                    suffix = f" ({r.error})" if r.error else ""
                    lines.append(f"  {r.host} [{r.role}] {r.target.version}{suffix}")
        if self.skipped_batches:
            lines.append("Not started:")
            for batch in self.skipped_batches:
                lines.append(f"  {batch.label}: {', '.join(batch.addresses)}")
        return lines


class RolloutEngine:
    def __init__(
        self,
        driver: LifecycleDriver,
        reconciler: ProxyReconciler,
        retry: RetryConfig | None = None,
        wait: float = 0.0,
        clock=None,
    ):
        self.driver = driver
        self.reconciler = reconciler
        retry = retry or RetryConfig()
        self.retry_policy = Backoff(retry.max_attempts, retry.interval, retry.backoff)
        self.wait = wait
        self.clock = clock or Clock()
        self._abort_requested = False

    def request_abort(self) -> None:
        """Stop before the next batch; the batch in flight runs to completion."""
        if not self._abort_requested:
            logger.warning("Abort requested: finishing the current batch, then stopping.")
        self._abort_requested = True

    async def execute(self, plan: RolloutPlan, rollback=False) -> RolloutReport:
        """Run the plan batch by batch. Rollbacks re-establish routes through restore()."""
        report = RolloutReport(status=RolloutStatus.SUCCEEDED)
        batches = list(plan)
        for i, batch in enumerate(batches):
            if self._abort_requested:
                report.status = RolloutStatus.CANCELLED
                report.message = "Rollout cancelled between batches."
                report.skipped_batches = batches[i:]
                break

            logger.info(f"Deploying {batch.target.version} to {batch.label}: {', '.join(batch.addresses)}")
            host_reports = await self.run_batch(batch, rollback=rollback)
            report.hosts.extend(host_reports)

            aborted = [h for h in host_reports if h.state == HostState.ABORTED]
            rolled_back = [h for h in host_reports if h.state == HostState.ROLLED_BACK]
            if aborted:
                report.status = RolloutStatus.ABORTED
                report.message = (
                    f"Rollout aborted: transport failure on {', '.join(h.host for h in aborted)}. "
                    "Completed batches remain deployed; check the listed hosts manually."
                )
                report.skipped_batches = batches[i + 1:]
                break
            if rolled_back:
                report.status = RolloutStatus.ROLLED_BACK
                report.message = (
                    f"{batch.target.version} failed health checks on {', '.join(h.host for h in rolled_back)}; "
                    "those hosts kept their previous release."
                )
                report.skipped_batches = batches[i + 1:]
                break

            if i < len(batches) - 1 and self.wait > 0:
                logger.info(f"Waiting {self.wait:g}s before the next batch...")
                await self.clock.sleep(self.wait)

        logger.info(f"Rollout {report.status.value}")
        return report

    async def run_batch(self, batch: Batch, rollback=False) -> list[HostReport]:
        """Transition every host in the batch concurrently; wait for all to be terminal."""
        reports = [HostReport(host=h.address, role=batch.role, target=batch.target) for h in batch.hosts]
        await asyncio.gather(*(self._run_host(batch, host, r, rollback) for host, r in zip(batch.hosts, reports)))
        return reports

    async def _retrying(self, host, action, fn, report=None):
        """Call fn, retrying TransportError under the transport policy."""
        state = RetryState(self.retry_policy)
        while True:
            state.start_attempt()
            if report is not None:
                report.attempts = state.attempt
            try:
                return await fn()
            except TransportError as e:
                if state.exhausted:
                    raise
                logger.warning(
                    f"[{host}] {action} failed ({e.reason}); "
                    f"retry {state.attempt}/{self.retry_policy.max_attempts - 1} in {state.next_delay():g}s"
                )
                await state.wait(self.clock)

    def _converged(self, host, role: str, target: Release) -> bool:
        """True when target serves alone: cutover, drain and stop all finished."""
        if not self.driver.is_settled(host, role, target):
            return False
        if not self.driver.config.role(role).proxied:
            return True
        route = self.reconciler.route(role, host)
        return route is not None and route.endpoint == self.driver.endpoint(role, target) and not route.draining

    async def _run_host(self, batch: Batch, host, report: HostReport, rollback=False) -> None:
        role = batch.role
        target = batch.target
        store = self.driver.store
        async with self.driver.transport.session(host):
            if self._converged(host, role, target):
                logger.info(f"[{host}] {role} already at {target.version}")
                report.advance(HostState.STOPPED)
                return

            record = store.get_record(host.address, role)
            from_release = record.current
            if from_release is not None and from_release.version == target.version:
                # Healthy on an earlier run but its cutover never finished.
                logger.info(f"[{host}] Resuming {role} {target.version} cutover")
                from_release = record.previous

            async def transition():
                outcome = await self.driver.transition(host, role, from_release, target, on_state=report.advance)
                if outcome.result is TransitionResult.TRANSPORT_ERROR:
                    raise TransportError(host, outcome.error)
                return outcome

            try:
                outcome = await self._retrying(host, "transition", transition, report)
            except TransportError as e:
                report.error = e.reason
                report.advance(HostState.ABORTED)
                return

            if outcome.result is TransitionResult.UNHEALTHY:
                report.error = outcome.error
                report.advance(HostState.ROLLING_BACK)
                try:
                    await self._retrying(host, "rollback", lambda: self.driver.discard(host, role, target))
                except TransportError as e:
                    report.error = f"{outcome.error}; cleanup failed: {e.reason}"
                    report.advance(HostState.ABORTED)
                    return
                report.advance(HostState.ROLLED_BACK)
                return

            route_to = self.reconciler.restore if rollback else self.reconciler.cutover
            try:
                if self.driver.config.role(role).proxied:
                    report.advance(HostState.CUTTING_OVER)
                    await self._retrying(host, "cutover", lambda: route_to(role, host, outcome.endpoint))
                    report.advance(HostState.DRAINING)
                    await self.reconciler.drain(role, host)
                if from_release is not None:
                    await self._retrying(host, "stop", lambda: self.driver.stop(host, role, from_release))
            except TransportError as e:
                report.error = e.reason
                report.advance(HostState.ABORTED)
                return
            self.driver.settle(host, role)
            report.advance(HostState.STOPPED)
