"""Error taxonomy for planning, transport, health checking and cutover."""


class DeckhandError(Exception):
    """Base class for all deckhand errors."""


class ConfigError(DeckhandError, ValueError):
    """Deployment descriptor is missing a key or has an invalid value."""


class InvalidBatchConfig(ConfigError):
    """Batch size is zero, negative, an out-of-range percentage or unparsable."""


class SecretNotFound(ConfigError, KeyError):
    """A secret referenced by the descriptor could not be resolved."""

    def __init__(self, key):
        self.key = key
        super().__init__(f"Secret '{key}' not found in secrets file or environment")

    def __str__(self):
        return self.args[0]


class UnknownRelease(ConfigError):
    """A rollback target version is not in the release history."""


class TransportError(DeckhandError):
    """Remote command could not be delivered (SSH/network failure, timeout),
    or failed in a way that leaves the host in an unknown state.
    """

    def __init__(self, host, reason):
        self.host = host
        self.reason = reason
        super().__init__(f"{host}: {reason}")


class HealthCheckTimeout(DeckhandError):
    """Health polling exceeded its overall deadline."""


class ImageNotFound(DeckhandError):
    """The release image tag does not exist in the registry."""


class RouteConflict(DeckhandError):
    """Two reconciliations raced on the same (role, host) route."""

    def __init__(self, role, host):
        self.role = role
        self.host = host
        super().__init__(f"Concurrent cutover for role '{role}' on {host}")


class Aborted(DeckhandError):
    """Rollout halted after a non-retryable transport failure.

    Carries the partial report so callers can show which hosts need a
    manual check.
    """

    def __init__(self, message, report=None):
        self.report = report
        super().__init__(message)
