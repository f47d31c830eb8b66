"""Container lifecycle driver: pull, start alongside, health-check, stop.

The driver is the only writer of ContainerRecord. It never stops the old
container during a transition; the rollout engine asks it to, once the proxy
has cut over and drained.
"""

import logging
import shlex
from dataclasses import dataclass
from enum import Enum

from deckhand.config.types import AccessoryConfig, DeployConfig, EnvConfig
from deckhand.deploy.states import HostState
from deckhand.errors import HealthCheckTimeout, TransportError
from deckhand.image import Release
from deckhand.retry import Backoff, Clock, RetryState
from deckhand.state import HealthStatus, StateStore

logger = logging.getLogger(__name__)

DOCKER_NETWORK = "deckhand"
REMOTE_ENV_DIR = ".deckhand/env"
STOP_TIMEOUT = 30
_STATUS_FORMAT = "{{if .State.Health}}{{.State.Health.Status}}{{else}}{{.State.Status}}{{end}}"


class TransitionResult(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class TransitionOutcome:
    result: TransitionResult
    container: str | None = None
    endpoint: str | None = None
    error: str | None = None


class _StepFailed(Exception):
    """A delivered docker command failed: the release cannot run here."""


class LifecycleDriver:
    """Drives containers for one service on its hosts through a Transport."""

    def __init__(self, config: DeployConfig, transport, store: StateStore, secrets, clock=None, dry_run=False):
        self.config = config
        self.transport = transport
        self.store = store
        self.secrets = secrets
        self.clock = clock or Clock()
        self.dry_run = dry_run
        self._env_files: dict[str, str] = {}
        self._prepared: set[str] = set()

    # ── Naming ────────────────────────────────────────────────────

    def container_name(self, role: str, release: Release) -> str:
        return f"{self.config.service}-{role}-{release.version}"

    def endpoint(self, role: str, release: Release) -> str:
        return f"{self.container_name(role, release)}:{self.config.proxy.app_port}"

    def _env_path(self, name: str) -> str:
        return f"{REMOTE_ENV_DIR}/{self.config.service}-{name}.env"

    # ── Preparation ───────────────────────────────────────────────

    def _render_env(self, env: EnvConfig) -> str:
        values = dict(env.clear)
        values.update(self.secrets.resolve_all(env.secret))
        return "".join(f"{key}={value}\n" for key, value in sorted(values.items()))

    def preflight(self, roles=None) -> None:
        """Resolve every secret the deploy needs before any host is touched."""
        for role in self.config.roles:
            if roles is None or role.name in roles:
                self._env_files[role.name] = self._render_env(role.env)
        if self.config.registry.requires_login:
            self.secrets.resolve(self.config.registry.password)

    async def _check(self, host, command, timeout=600):
        result = await self.transport.run(host, command, timeout=timeout)
        if not result.ok:
            summary = " ".join(command.split()[:2])
            raise _StepFailed(f"'{summary}' exited {result.exit_code}: {result.stderr.strip()}")
        return result

    async def prepare_host(self, host) -> None:
        """Create the docker network and env dir, log in to the registry (once per host)."""
        if host.address in self._prepared:
            return
        await self._check(host, f"mkdir -p {REMOTE_ENV_DIR}")
        await self._check(
            host,
            f"docker network inspect {DOCKER_NETWORK} >/dev/null 2>&1 || docker network create {DOCKER_NETWORK}",
        )
        registry = self.config.registry
        if registry.requires_login:
            password = self.secrets.resolve(registry.password)
            server = f" {shlex.quote(registry.server)}" if registry.server else ""
            await self._check(
                host,
                f"docker login{server} -u {shlex.quote(registry.username)} -p {shlex.quote(password)}",
            )
        self._prepared.add(host.address)

    async def upload_env(self, host, role: str) -> None:
        if role not in self._env_files:
            self._env_files[role] = self._render_env(self.config.role(role).env)
        await self.transport.write_file(host, self._env_path(role), self._env_files[role])

    # ── Container operations ──────────────────────────────────────

    async def pull(self, host, release: Release) -> None:
        logger.info(f"[{host}] Pulling {release.image}...")
        await self._check(host, f"docker pull {shlex.quote(release.image)}", timeout=1800)

    def _run_command(self, role: str, release: Release) -> str:
        role_config = self.config.role(role)
        name = self.container_name(role, release)
        args = [
            "docker", "run", "--detach", "--restart", "unless-stopped",
            "--name", name,
            "--network", DOCKER_NETWORK,
            "--env-file", self._env_path(role),
            "--label", f"service={self.config.service}",
            "--label", f"role={role}",
            "--label", f"version={release.version}",
        ]
        if role_config.proxied:
            hc = self.config.healthcheck
            health_cmd = f"curl -fsS --max-time 5 http://localhost:{hc.port}{hc.path} || exit 1"
            args += ["--health-cmd", health_cmd, "--health-interval", f"{max(1, int(hc.interval))}s"]
        args.append(release.image)
        command = " ".join(shlex.quote(a) for a in args)
        if role_config.cmd:
            command += f" {role_config.cmd}"
        return command

    async def container_status(self, host, name: str) -> str | None:
        """Health status if the image has a healthcheck, else the container state; None if absent."""
        result = await self.transport.run(
            host, f"docker container inspect --format {shlex.quote(_STATUS_FORMAT)} {shlex.quote(name)}"
        )
        if not result.ok:
            return None
        return result.stdout.strip()

    async def start(self, host, role: str, release: Release) -> str:
        """Start the release's container alongside whatever is running now."""
        name = self.container_name(role, release)
        status = None if self.dry_run else await self.container_status(host, name)
        if status is None:
            logger.info(f"[{host}] Starting {name}...")
            await self._check(host, self._run_command(role, release))
        elif status in ("exited", "created", "paused", "unhealthy"):
            # Left over from an earlier deploy of the same version.
            logger.info(f"[{host}] Restarting existing container {name}...")
            await self._check(host, f"docker start {shlex.quote(name)}")
        else:
            logger.info(f"[{host}] {name} already running ({status})")
        return name

    async def wait_healthy(self, host, role: str, release: Release) -> None:
        """Poll until healthy. Raises HealthCheckTimeout or _StepFailed."""
        name = self.container_name(role, release)
        if self.dry_run:
            logger.info(f"[dry-run] [{host}] assume {name} healthy")
            return
        hc = self.config.healthcheck
        proxied = self.config.role(role).proxied
        state = RetryState(Backoff(hc.max_attempts, hc.interval, hc.backoff, hc.max_interval))
        started = self.clock.now()
        status = None
        while state.start_attempt():
            if self.clock.now() - started >= hc.timeout:
                raise HealthCheckTimeout(f"{name} not healthy within {hc.timeout:g}s (last status: {status})")
            status = await self.container_status(host, name)
            logger.debug(f"[{host}] {name} attempt {state.attempt}/{hc.max_attempts}: {status}")
            if status == "healthy" or (not proxied and status == "running"):
                return
            if status in (None, "exited", "dead"):
                raise _StepFailed(f"{name} is {status or 'gone'}")
            await state.wait(self.clock)
        raise _StepFailed(f"{name} not healthy after {hc.max_attempts} attempts (last status: {status})")

    async def _cleanup(self, host, command, name):
        """Run a stop/remove command. A container that is already gone counts as done.

        Any other failure raises TransportError: the container's state is unknown,
        so the engine retries it and gives up with the host aborted.
        """
        result = await self.transport.run(host, command)
        if not result.ok and "No such container" not in result.stderr:
            action = " ".join(command.split()[:2])
            raise TransportError(host, f"'{action}' {name} exited {result.exit_code}: {result.stderr.strip()}")

    async def stop(self, host, role: str, release: Release) -> None:
        """Stop (not remove) a container so a rollback can restart it."""
        name = self.container_name(role, release)
        logger.info(f"[{host}] Stopping {name}...")
        await self._cleanup(host, f"docker stop -t {STOP_TIMEOUT} {shlex.quote(name)}", name)

    async def discard(self, host, role: str, release: Release) -> None:
        """Remove a candidate container that failed its health check."""
        name = self.container_name(role, release)
        logger.info(f"[{host}] Removing failed container {name}...")
        await self._cleanup(host, f"docker rm -f {shlex.quote(name)}", name)

    def settle(self, host, role: str) -> None:
        """Mark the role's current release as the only one serving on the host."""
        record = self.store.get_record(host.address, role)
        record.converged = True
        self.store.put_record(record)

    def is_settled(self, host, role: str, release: Release) -> bool:
        record = self.store.get_record(host.address, role)
        return record.converged and record.current is not None and record.current.version == release.version

    # ── Transition ────────────────────────────────────────────────

    async def transition(self, host, role: str, from_release, to_release: Release, on_state=None) -> TransitionOutcome:
        """Bring to_release up next to from_release and wait for it to be healthy.

        On success the record moves current -> previous. On failure the record's
        current release is left alone and the old container keeps serving.
        """

        def emit(state):
            if on_state is not None:
                on_state(state)

        name = self.container_name(role, to_release)
        record = self.store.get_record(host.address, role)
        try:
            emit(HostState.PULLING)
            await self.prepare_host(host)
            await self.upload_env(host, role)
            await self.pull(host, to_release)

            emit(HostState.STARTING)
            record.health = HealthStatus.STARTING
            self.store.put_record(record)
            await self.start(host, role, to_release)

            emit(HostState.HEALTH_CHECKING)
            await self.wait_healthy(host, role, to_release)
        except TransportError as e:
            logger.error(f"[{host}] Transport failure: {e}")
            return TransitionOutcome(TransitionResult.TRANSPORT_ERROR, container=name, error=e.reason)
        except (_StepFailed, HealthCheckTimeout) as e:
            logger.error(f"[{host}] {to_release.version} unhealthy: {e}")
            record.health = HealthStatus.UNHEALTHY
            record.failed = to_release
            self.store.put_record(record)
            return TransitionOutcome(TransitionResult.UNHEALTHY, container=name, error=str(e))

        logger.info(f"[{host}] {name} is healthy")
        record.current = to_release
        record.previous = from_release
        record.health = HealthStatus.HEALTHY
        record.failed = None
        record.converged = False
        self.store.put_record(record)
        return TransitionOutcome(TransitionResult.HEALTHY, container=name, endpoint=self.endpoint(role, to_release))

    # ── Inspection ────────────────────────────────────────────────

    async def containers(self, host, role: str) -> list[str]:
        """``name<TAB>status`` lines for this service's role containers on the host."""
        fmt = "{{.Names}}\t{{.Status}}"
        result = await self.transport.run(
            host,
            f"docker ps --all --filter label=service={self.config.service} --filter label=role={role}"
            f" --format {shlex.quote(fmt)}",
        )
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def logs(self, host, role: str, release: Release, lines=100, grep=None) -> str:
        name = self.container_name(role, release)
        command = f"docker logs --timestamps --tail {int(lines)} {shlex.quote(name)} 2>&1"
        if grep:
            command += f" | grep {shlex.quote(grep)}"
        result = await self.transport.run(host, command)
        return result.stdout

    # ── Accessories ───────────────────────────────────────────────

    def accessory_name(self, accessory: AccessoryConfig) -> str:
        return f"{self.config.service}-{accessory.name}"

    async def boot_accessory(self, host, accessory: AccessoryConfig) -> bool:
        name = self.accessory_name(accessory)
        try:
            await self.prepare_host(host)
            env_path = self._env_path(accessory.name)
            await self.transport.write_file(host, env_path, self._render_env(accessory.env))
            await self._check(host, f"docker pull {shlex.quote(accessory.image)}", timeout=1800)
            args = [
                "docker", "run", "--detach", "--restart", "unless-stopped",
                "--name", name,
                "--network", DOCKER_NETWORK,
                "--env-file", env_path,
                "--label", f"service={self.config.service}",
                "--label", f"accessory={accessory.name}",
            ]
            if accessory.port:
                args += ["--publish", accessory.port]
            for volume in accessory.volumes:
                args += ["--volume", volume]
            args.append(accessory.image)
            command = " ".join(shlex.quote(a) for a in args)
            if accessory.cmd:
                command += f" {accessory.cmd}"
            logger.info(f"[{host}] Booting accessory {name}...")
            await self._check(host, command)
        except _StepFailed as e:
            logger.error(f"[{host}] Failed to boot {name}: {e}")
            return False
        return True

    async def remove_accessory(self, host, accessory: AccessoryConfig) -> bool:
        name = self.accessory_name(accessory)
        logger.info(f"[{host}] Removing accessory {name}...")
        result = await self.transport.run(host, f"docker rm -f {shlex.quote(name)}")
        if not result.ok:
            logger.error(f"[{host}] Failed to remove {name}: {result.stderr.strip()}")
        return result.ok
