"""Proxy reconciler: shift traffic to a healthy container, drain the old one.

The reconciler is the only writer of ProxyRoute. It drives the proxy running
on each host through its CLI over the transport and keeps the route table in
the state store. Reconciliations are serialized per (role, host); a second
attempt while one is in flight is a RouteConflict.
"""

import contextlib
import logging
import shlex

from deckhand.config.types import DeployConfig
from deckhand.errors import RouteConflict, TransportError
from deckhand.retry import Clock
from deckhand.state import DrainingEndpoint, ProxyRoute, StateStore

logger = logging.getLogger(__name__)

PROXY_CONTAINER = "kamal-proxy"


class ProxyReconciler:
    def __init__(self, config: DeployConfig, transport, store: StateStore, clock=None, dry_run=False):
        self.config = config
        self.transport = transport
        self.store = store
        self.clock = clock or Clock()
        self.dry_run = dry_run
        self._busy: set[tuple[str, str]] = set()
        self._booted: set[str] = set()

    @contextlib.contextmanager
    def _claim(self, role, host):
        key = (role, str(host))
        if key in self._busy:
            raise RouteConflict(role, str(host))
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)

    def route(self, role, host) -> ProxyRoute | None:
        return self.store.get_route(role, str(host))

    def _proxy_service(self, role):
        return f"{self.config.service}-{role}"

    async def _proxy(self, host, args):
        command = f"docker exec {PROXY_CONTAINER} kamal-proxy " + " ".join(shlex.quote(a) for a in args)
        result = await self.transport.run(host, command, timeout=self.config.drain_timeout + 120)
        if not result.ok:
            # The proxy's route is unknown after a failed command: needs the same
            # handling as an undelivered command.
            raise TransportError(host, f"proxy command failed ({result.exit_code}): {result.stderr.strip()}")
        return result

    async def ensure_proxy(self, host) -> None:
        """Boot the proxy container on the host if it is not running."""
        if str(host) in self._booted:
            return
        image = shlex.quote(self.config.proxy.image)
        ports = "--publish 80:80 --publish 443:443" if self.config.proxy.ssl else "--publish 80:80"
        command = (
            f"docker container inspect {PROXY_CONTAINER} >/dev/null 2>&1"
            f" || docker run --detach --restart unless-stopped --name {PROXY_CONTAINER}"
            f" --network deckhand {ports} --volume kamal-proxy-config:/home/kamal-proxy/.config/kamal-proxy {image}"
        )
        result = await self.transport.run(host, command)
        if not result.ok:
            raise TransportError(host, f"could not start proxy: {result.stderr.strip()}")
        self._booted.add(str(host))

    async def cutover(self, role, host, new_endpoint) -> ProxyRoute:
        """Atomically point (role, host) at new_endpoint; the old endpoint drains."""
        with self._claim(role, host):
            await self.ensure_proxy(host)
            route = self.store.get_route(role, str(host)) or ProxyRoute(
                role=role,
                host=str(host),
                public_host=self.config.proxy.host,
                path=self.config.proxy.path_prefix,
            )
            old_endpoint = route.endpoint

            args = [
                "deploy", self._proxy_service(role),
                "--target", new_endpoint,
                "--health-check-path", self.config.healthcheck.path,
                "--drain-timeout", f"{int(self.config.drain_timeout)}s",
            ]
            if self.config.proxy.host:
                args += ["--host", self.config.proxy.host]
            if self.config.proxy.path_prefix and self.config.proxy.path_prefix != "/":
                args += ["--path-prefix", self.config.proxy.path_prefix]
            if self.config.proxy.ssl:
                args.append("--tls")
            logger.info(f"[{host}] Routing {role} traffic to {new_endpoint}")
            await self._proxy(host, args)

            if old_endpoint and old_endpoint != new_endpoint:
                route.draining = [d for d in route.draining if d.endpoint != new_endpoint]
                route.draining.append(DrainingEndpoint(old_endpoint, self.clock.wall() + self.config.drain_timeout))
            route.endpoint = new_endpoint
            self.store.put_route(route)
            return route

    async def restore(self, role, host, endpoint) -> ProxyRoute:
        """Re-establish a previous route (rollback)."""
        logger.info(f"[{host}] Restoring {role} route to {endpoint}")
        return await self.cutover(role, host, endpoint)

    async def drain(self, role, host) -> list[str]:
        """Wait out the grace period, then forget draining endpoints.

        Returns the endpoints that finished draining.
        """
        with self._claim(role, host):
            route = self.store.get_route(role, str(host))
            if route is None or not route.draining:
                return []
            deadline = max(d.until for d in route.draining)
            # Deadlines may come from an earlier run; never wait past one grace period.
            remaining = min(deadline - self.clock.wall(), self.config.drain_timeout)
            if remaining > 0 and not self.dry_run:
                logger.info(f"[{host}] Draining {role} for {remaining:g}s...")
                await self.clock.sleep(remaining)
            drained = [d.endpoint for d in route.draining]
            route.draining = []
            self.store.put_route(route)
            return drained
