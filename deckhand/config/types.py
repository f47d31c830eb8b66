"""Deployment descriptor dataclass types."""

from dataclasses import dataclass, field

from deckhand.errors import ConfigError

ROLE_KINDS = ("service", "worker")


def _require(d: dict, key: str, section: str):
    if key not in d or d[key] is None:
        raise ConfigError(f"Missing required key '{section}.{key}'")
    return d[key]


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class SSHConfig:
    """How to reach hosts."""

    user: str = "root"
    port: int = 22
    keys: list[str] = field(default_factory=list)
    max_connections: int = 16

    @property
    def key(self) -> str | None:
        return self.keys[0] if self.keys else None


@dataclass
class EnvConfig:
    """Container environment: clear values plus secret names resolved at deploy time."""

    clear: dict[str, str] = field(default_factory=dict)
    secret: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d) -> "EnvConfig":
        if d is None:
            return cls()
        if not isinstance(d, dict):
            raise ConfigError("'env' must be a mapping with 'clear' and/or 'secret'")
        # A flat mapping without clear/secret sections is all clear values.
        if "clear" not in d and "secret" not in d:
            return cls(clear={k: str(v) for k, v in d.items()})
        return cls(
            clear={k: str(v) for k, v in (d.get("clear") or {}).items()},
            secret=[str(s) for s in _as_list(d.get("secret"))],
        )

    def merged(self, override: "EnvConfig") -> "EnvConfig":
        secret = list(self.secret)
        secret += [s for s in override.secret if s not in secret]
        return EnvConfig(clear={**self.clear, **override.clear}, secret=secret)


@dataclass
class RegistryConfig:
    """Image registry; ``password`` names a secret, never a literal value."""

    server: str | None = None
    username: str | None = None
    password: str | None = None

    @classmethod
    def from_dict(cls, d) -> "RegistryConfig":
        if not d:
            return cls()
        password = d.get("password")
        if isinstance(password, list):
            # Kamal-style secret reference: password: [REGISTRY_PASSWORD]
            password = password[0] if password else None
        return cls(server=d.get("server"), username=d.get("username"), password=password)

    @property
    def requires_login(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class RoleConfig:
    """A named class of hosts running the same workload."""

    name: str
    hosts: list[str] = field(default_factory=list)
    kind: str = "service"
    cmd: str | None = None
    env: EnvConfig = field(default_factory=EnvConfig)

    @property
    def proxied(self) -> bool:
        """Service roles receive traffic through the proxy; workers do not."""
        return self.kind == "service"


@dataclass
class HealthcheckConfig:
    """Health polling policy. Attempts, interval and timeout are required."""

    max_attempts: int
    interval: float
    timeout: float
    path: str = "/up"
    port: int = 80
    backoff: float = 2.0
    max_interval: float | None = None

    @classmethod
    def from_dict(cls, d, default_port: int = 80) -> "HealthcheckConfig":
        if not isinstance(d, dict):
            raise ConfigError("Missing required section 'healthcheck'")
        hc = cls(
            max_attempts=int(_require(d, "max_attempts", "healthcheck")),
            interval=float(_require(d, "interval", "healthcheck")),
            timeout=float(_require(d, "timeout", "healthcheck")),
            path=d.get("path", "/up"),
            port=int(d.get("port", default_port)),
            backoff=float(d.get("backoff", 2.0)),
            max_interval=float(d["max_interval"]) if d.get("max_interval") is not None else None,
        )
        if hc.max_attempts < 1:
            raise ConfigError("healthcheck.max_attempts must be at least 1")
        if hc.interval < 0 or hc.timeout <= 0:
            raise ConfigError("healthcheck.interval must be >= 0 and healthcheck.timeout > 0")
        return hc


@dataclass
class ProxyConfig:
    """Proxy settings for service roles."""

    ssl: bool = False
    host: str | None = None
    app_port: int = 80
    path_prefix: str = "/"
    image: str = "basecamp/kamal-proxy:latest"


@dataclass
class BootConfig:
    """Batching: ``limit`` is a count or a percentage string; None means all hosts."""

    limit: int | str | None = None
    wait: float = 0.0


@dataclass
class RetryConfig:
    """Transport retry policy for a whole host transition."""

    max_attempts: int = 3
    interval: float = 2.0
    backoff: float = 2.0


@dataclass
class AccessoryConfig:
    """Long-lived auxiliary container (database, cache) outside rollouts."""

    name: str
    image: str
    hosts: list[str] = field(default_factory=list)
    port: str | None = None
    cmd: str | None = None
    env: EnvConfig = field(default_factory=EnvConfig)
    volumes: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, d: dict) -> "AccessoryConfig":
        if not isinstance(d, dict):
            raise ConfigError(f"Accessory '{name}' must be a mapping")
        hosts = _as_list(d.get("hosts")) + _as_list(d.get("host"))
        if not hosts:
            raise ConfigError(f"Accessory '{name}' has no host")
        return cls(
            name=name,
            image=_require(d, "image", f"accessories.{name}"),
            hosts=[str(h) for h in hosts],
            port=str(d["port"]) if d.get("port") is not None else None,
            cmd=d.get("cmd"),
            env=EnvConfig.from_dict(d.get("env")),
            volumes=[str(v) for v in _as_list(d.get("volumes"))],
        )


@dataclass
class DeployConfig:
    """Complete deployment descriptor."""

    service: str
    image: str
    roles: list[RoleConfig]
    healthcheck: HealthcheckConfig
    drain_timeout: float
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    env: EnvConfig = field(default_factory=EnvConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    boot: BootConfig = field(default_factory=BootConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    accessories: list[AccessoryConfig] = field(default_factory=list)
    primary_role: str = "web"
    state_path: str = ".deckhand/state.json"
    secrets_path: str = ".deckhand/secrets"

    @classmethod
    def from_dict(cls, d: dict) -> "DeployConfig":
        """Build a DeployConfig from a (post-merge) descriptor dict."""
        if not isinstance(d, dict):
            raise ConfigError("Deployment descriptor must be a mapping")

        service = _require(d, "service", "deploy")
        image = _require(d, "image", "deploy")
        primary_role = d.get("primary_role", "web")
        env = EnvConfig.from_dict(d.get("env"))
        roles = _parse_servers(_require(d, "servers", "deploy"), primary_role, env)
        if primary_role not in [r.name for r in roles]:
            primary_role = roles[0].name

        proxy_dict = d.get("proxy") or {}
        proxy = ProxyConfig(
            ssl=bool(proxy_dict.get("ssl", False)),
            host=proxy_dict.get("host"),
            app_port=int(proxy_dict.get("app_port", 80)),
            path_prefix=proxy_dict.get("path_prefix", "/"),
            image=proxy_dict.get("image", "basecamp/kamal-proxy:latest"),
        )

        if d.get("drain_timeout") is None:
            raise ConfigError("Missing required key 'deploy.drain_timeout'")
        drain_timeout = float(d["drain_timeout"])
        if drain_timeout < 0:
            raise ConfigError("drain_timeout must be >= 0")

        ssh_dict = d.get("ssh") or {}
        ssh = SSHConfig(
            user=ssh_dict.get("user", "root"),
            port=int(ssh_dict.get("port", 22)),
            keys=[str(k) for k in _as_list(ssh_dict.get("keys"))],
            max_connections=int(ssh_dict.get("max_connections", 16)),
        )

        boot_dict = d.get("boot") or {}
        boot = BootConfig(limit=boot_dict.get("limit"), wait=float(boot_dict.get("wait", 0)))

        retry_dict = d.get("retry") or {}
        retry = RetryConfig(
            max_attempts=int(retry_dict.get("max_attempts", 3)),
            interval=float(retry_dict.get("interval", 2.0)),
            backoff=float(retry_dict.get("backoff", 2.0)),
        )
        if retry.max_attempts < 1:
            raise ConfigError("retry.max_attempts must be at least 1")

        accessories = [AccessoryConfig.from_dict(name, a) for name, a in (d.get("accessories") or {}).items()]

        return cls(
            service=str(service),
            image=str(image),
            roles=roles,
            healthcheck=HealthcheckConfig.from_dict(d.get("healthcheck"), default_port=proxy.app_port),
            drain_timeout=drain_timeout,
            registry=RegistryConfig.from_dict(d.get("registry")),
            env=env,
            ssh=ssh,
            proxy=proxy,
            boot=boot,
            retry=retry,
            accessories=accessories,
            primary_role=primary_role,
            state_path=d.get("state_path", ".deckhand/state.json"),
            secrets_path=d.get("secrets_path", ".deckhand/secrets"),
        )

    def role(self, name: str) -> RoleConfig:
        for role in self.roles:
            if role.name == name:
                return role
        raise ConfigError(f"Unknown role '{name}'. Available roles: {', '.join(r.name for r in self.roles)}")

    def accessory(self, name: str) -> AccessoryConfig:
        for accessory in self.accessories:
            if accessory.name == name:
                return accessory
        available = ", ".join(a.name for a in self.accessories) or "none"
        raise ConfigError(f"Unknown accessory '{name}'. Available accessories: {available}")


def _parse_servers(servers, primary_role: str, env: EnvConfig) -> list[RoleConfig]:
    """Parse ``servers`` as a host list (implies the primary role) or a role mapping."""
    if isinstance(servers, list):
        servers = {primary_role: servers}
    if not isinstance(servers, dict) or not servers:
        raise ConfigError("'servers' must be a non-empty host list or role mapping")
    if primary_role not in servers:
        primary_role = next(iter(servers))

    roles = []
    for name, entry in servers.items():
        if isinstance(entry, list):
            entry = {"hosts": entry}
        if not isinstance(entry, dict):
            raise ConfigError(f"Role '{name}' must be a host list or mapping")
        hosts = [str(h) for h in _as_list(entry.get("hosts"))]
        if not hosts:
            raise ConfigError(f"Role '{name}' has no hosts")
        kind = entry.get("kind", "service" if name == primary_role else "worker")
        if kind not in ROLE_KINDS:
            raise ConfigError(f"Role '{name}' has unknown kind '{kind}'. Expected one of: {', '.join(ROLE_KINDS)}")
        roles.append(
            RoleConfig(
                name=str(name),
                hosts=hosts,
                kind=kind,
                cmd=entry.get("cmd"),
                env=env.merged(EnvConfig.from_dict(entry.get("env"))),
            )
        )
    return roles
