"""Target registry: hosts and per-role host groups a deployment touches."""

import fnmatch
from dataclasses import dataclass

from deckhand.config.types import DeployConfig
from deckhand.errors import ConfigError


@dataclass(frozen=True)
class Host:
    """A deploy target. ``roles`` keeps role registration order."""

    address: str
    roles: tuple[str, ...]
    user: str = "root"
    port: int = 22
    key: str | None = None

    @property
    def ssh_address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.user}@{self.address}" if self.user else self.address

    def __str__(self):
        return self.address


@dataclass(frozen=True)
class Role:
    """A named class of hosts running the same workload definition."""

    name: str
    kind: str = "service"
    cmd: str | None = None


class TargetRegistry:
    """Resolves hosts per role, in registration order.

    Registration order is the order hosts first appear while walking roles in
    descriptor order; planning relies on it for stable batching.
    """

    def __init__(self, hosts: list[Host], roles: list[Role], primary_role: str | None = None):
        names = [r.name for r in roles]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate role names: {', '.join(duplicates)}")
        for host in hosts:
            if not host.roles:
                raise ConfigError(f"Host {host.address} does not belong to any role")
            unknown = [r for r in host.roles if r not in names]
            if unknown:
                raise ConfigError(f"Host {host.address} references unknown role(s): {', '.join(unknown)}")
        self._hosts = list(hosts)
        self._roles = list(roles)
        self.primary_role = primary_role or (roles[0].name if roles else None)

    @classmethod
    def from_config(cls, config: DeployConfig) -> "TargetRegistry":
        memberships: dict[str, list[str]] = {}
        for role in config.roles:
            for address in role.hosts:
                roles = memberships.setdefault(address, [])
                if role.name not in roles:
                    roles.append(role.name)
        hosts = [
            Host(
                address=address,
                roles=tuple(roles),
                user=config.ssh.user,
                port=config.ssh.port,
                key=config.ssh.key,
            )
            for address, roles in memberships.items()
        ]
        roles = [Role(name=r.name, kind=r.kind, cmd=r.cmd) for r in config.roles]
        return cls(hosts, roles, primary_role=config.primary_role)

    @property
    def hosts(self) -> list[Host]:
        return list(self._hosts)

    @property
    def roles(self) -> list[Role]:
        """Roles in deploy order: the primary role first, then descriptor order."""
        primary = [r for r in self._roles if r.name == self.primary_role]
        return primary + [r for r in self._roles if r.name != self.primary_role]

    def role(self, name: str) -> Role:
        for role in self._roles:
            if role.name == name:
                return role
        raise ConfigError(f"Unknown role '{name}'")

    def host(self, address: str) -> Host:
        for host in self._hosts:
            if host.address == address:
                return host
        raise ConfigError(f"Unknown host '{address}'")

    def hosts_for(self, role: str) -> list[Host]:
        return [h for h in self._hosts if role in h.roles]

    def filter(self, roles=None, hosts=None) -> "TargetRegistry":
        """Narrow to roles/hosts matching the given names or wildcard patterns."""
        selected_roles = self._roles
        if roles:
            selected_roles = [r for r in self._roles if any(fnmatch.fnmatchcase(r.name, p) for p in roles)]
            if not selected_roles:
                raise ConfigError(f"No roles match: {', '.join(roles)}")
        role_names = {r.name for r in selected_roles}

        selected_hosts = []
        for host in self._hosts:
            if hosts and not any(fnmatch.fnmatchcase(host.address, p) for p in hosts):
                continue
            kept = tuple(r for r in host.roles if r in role_names)
            if kept:
                selected_hosts.append(Host(host.address, kept, host.user, host.port, host.key))
        if not selected_hosts:
            raise ConfigError("No hosts match the given --roles/--hosts filters")

        # Drop roles left without hosts after host filtering.
        used = {r for h in selected_hosts for r in h.roles}
        selected_roles = [r for r in selected_roles if r.name in used]
        return TargetRegistry(selected_hosts, selected_roles, primary_role=self.primary_role)
