"""Deploy parameters dataclass."""

from dataclasses import dataclass, field

from deckhand.config.loader import DEFAULT_CONFIG_FILE


@dataclass
class DeployParams:
    """Everything a CLI command needs to build a Deployment."""

    config_file: str = DEFAULT_CONFIG_FILE
    destination: str | None = None
    roles: list[str] = field(default_factory=list)  # wildcard patterns
    hosts: list[str] = field(default_factory=list)  # wildcard patterns
    version: str | None = None
    batch_size: int | str | None = None  # overrides boot.limit
    dry_run: bool = False
    verify_image: bool = False
