"""Deploy orchestration entry points: deploy, rollback, status, logs, accessories."""

import logging
from dataclasses import dataclass

from deckhand.config.loader import load_config
from deckhand.config.types import DeployConfig
from deckhand.deploy.lifecycle import LifecycleDriver
from deckhand.deploy.params import DeployParams
from deckhand.deploy.planner import RolloutPlan, RolloutPlanner
from deckhand.deploy.proxy import ProxyReconciler
from deckhand.deploy.rollback import RollbackController
from deckhand.deploy.rollout import RolloutEngine, RolloutReport, RolloutStatus
from deckhand.errors import Aborted, ConfigError
from deckhand.image import Release, resolve_release, verify_release
from deckhand.retry import Clock
from deckhand.secrets import DotenvSecrets
from deckhand.state import FileStateStore
from deckhand.targets import Host, TargetRegistry
from deckhand.transport.ssh import SSHTransport

logger = logging.getLogger(__name__)


@dataclass
class Deployment:
    """Wired collaborators for one invocation."""

    config: DeployConfig
    registry: TargetRegistry
    transport: object
    store: object
    secrets: object
    driver: LifecycleDriver
    reconciler: ProxyReconciler
    planner: RolloutPlanner
    engine: RolloutEngine
    rollbacks: RollbackController
    dry_run: bool = False

    @classmethod
    def build(cls, config, roles=None, hosts=None, transport=None, store=None, secrets=None, clock=None, dry_run=False):
        registry = TargetRegistry.from_config(config)
        if roles or hosts:
            registry = registry.filter(roles=roles, hosts=hosts)
        if transport is None:
            transport = SSHTransport(max_connections=config.ssh.max_connections, dry_run=dry_run)
        if store is None:
            # Dry runs must not record releases that never happened.
            store = FileStateStore(config.state_path, read_only=dry_run)
        if secrets is None:
            secrets = DotenvSecrets(config.secrets_path)
        clock = clock or Clock()

        driver = LifecycleDriver(config, transport, store, secrets, clock=clock, dry_run=dry_run)
        reconciler = ProxyReconciler(config, transport, store, clock=clock, dry_run=dry_run)
        planner = RolloutPlanner()
        wait = 0.0 if dry_run else config.boot.wait
        engine = RolloutEngine(driver, reconciler, retry=config.retry, wait=wait, clock=clock)
        rollbacks = RollbackController(registry, store, engine, planner=planner)
        return cls(config, registry, transport, store, secrets, driver, reconciler, planner, engine, rollbacks, dry_run)

    @classmethod
    def from_params(cls, params: DeployParams, **kwargs):
        config = load_config(params.config_file, params.destination)
        return cls.build(config, roles=params.roles, hosts=params.hosts, dry_run=params.dry_run, **kwargs)

    def plan(self, target: Release, batch_size=None) -> RolloutPlan:
        limit = batch_size if batch_size is not None else self.config.boot.limit
        return self.planner.plan(
            self.registry.hosts, limit, target, roles=[r.name for r in self.registry.roles]
        )


def _finish(report: RolloutReport) -> RolloutReport:
    for line in report.summary_lines():
        logger.info(line)
    if report.status is RolloutStatus.ABORTED:
        raise Aborted(report.message, report=report)
    return report


async def run_deploy(deployment: Deployment, version=None, batch_size=None, verify_image=False) -> RolloutReport:
    """Deploy a new release to every targeted host.

    Planning and secret resolution happen before any host is touched, so
    config errors never leave a half-started rollout.
    """
    config = deployment.config
    release = await resolve_release(config.image, config.registry.server, version=version)
    plan = deployment.plan(release, batch_size)
    if not plan.batches:
        raise ConfigError("No hosts to deploy to")
    deployment.driver.preflight([b.role for b in plan.batches])

    if verify_image and not deployment.dry_run:
        password = deployment.secrets.resolve(config.registry.password) if config.registry.requires_login else None
        await verify_release(release, config.registry.server, config.registry.username, password)

    logger.info(f"Deploying {config.service} {release.version} ({release.image})")
    for line in plan.describe():
        logger.info(line)
    deployment.store.add_release(release)
    return _finish(await deployment.engine.execute(plan))


async def run_rollback(deployment: Deployment, version=None, batch_size=None) -> RolloutReport:
    """Roll back to the given release, or each host's previous release."""
    target = version or "previous release"
    logger.info(f"Rolling back {deployment.config.service} to {target}")
    deployment.driver.preflight([r.name for r in deployment.registry.roles])
    return _finish(await deployment.rollbacks.rollback_all(version, batch_size))


async def run_status(deployment: Deployment, live=True) -> list[str]:
    """Current release, health and route per role and host."""
    lines = []
    releases = deployment.store.releases()
    if releases:
        lines.append(f"Latest release: {releases[-1].version} ({releases[-1].created_at})")
    for role in deployment.registry.roles:
        lines.append(f"{role.name} ({role.kind}):")
        for host in deployment.registry.hosts_for(role.name):
            record = deployment.store.get_record(host.address, role.name)
            current = record.current.version if record.current else "-"
            previous = record.previous.version if record.previous else "-"
            line = f"  {host.address}: current={current} previous={previous} health={record.health.value}"
            if record.failed:
                line += f" failed={record.failed.version}"
            route = deployment.store.get_route(role.name, host.address)
            if route is not None:
                line += f" route={route.endpoint}"
                if route.draining:
                    line += f" draining={','.join(d.endpoint for d in route.draining)}"
            lines.append(line)
            if live:
                for container in await deployment.driver.containers(host, role.name):
                    lines.append(f"    {container}")
    return lines


async def run_logs(deployment: Deployment, role=None, lines=100, grep=None) -> dict[str, str]:
    """Logs of the current container per host, keyed by ``host [role]``."""
    roles = [deployment.registry.role(role)] if role else deployment.registry.roles
    output = {}
    for r in roles:
        for host in deployment.registry.hosts_for(r.name):
            record = deployment.store.get_record(host.address, r.name)
            if record.current is None:
                logger.warning(f"[{host}] No {r.name} release deployed")
                continue
            output[f"{host.address} [{r.name}]"] = await deployment.driver.logs(
                host, r.name, record.current, lines=lines, grep=grep
            )
    return output


def _accessory_hosts(deployment, accessory):
    ssh = deployment.config.ssh
    return [Host(address=a, roles=(accessory.name,), user=ssh.user, port=ssh.port, key=ssh.key) for a in accessory.hosts]


async def boot_accessory(deployment: Deployment, name: str) -> bool:
    accessory = deployment.config.accessory(name)
    ok = True
    for host in _accessory_hosts(deployment, accessory):
        ok = await deployment.driver.boot_accessory(host, accessory) and ok
    return ok


async def remove_accessory(deployment: Deployment, name: str) -> bool:
    accessory = deployment.config.accessory(name)
    ok = True
    for host in _accessory_hosts(deployment, accessory):
        ok = await deployment.driver.remove_accessory(host, accessory) and ok
    return ok
