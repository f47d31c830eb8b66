"""Secrets providers: resolve secret names to values at deploy time.

Secret values never live in the deployment descriptor. The descriptor names
them (``env.secret``, ``registry.password``) and a provider resolves the names
from a dotenv-style secrets file or the process environment.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from dotenv import dotenv_values

from deckhand.errors import SecretNotFound
from deckhand.redact import register_secret

logger = logging.getLogger(__name__)


class SecretsProvider(ABC):
    """Capability interface: ``resolve(key) -> value`` or raise SecretNotFound."""

    @abstractmethod
    def lookup(self, key: str) -> str | None:
        """Return the value or None when the key is unknown."""
        ...

    def resolve(self, key: str) -> str:
        value = self.lookup(key)
        if value is None:
            raise SecretNotFound(key)
        register_secret(value)
        return value

    def resolve_all(self, keys) -> dict[str, str]:
        return {key: self.resolve(key) for key in keys}


class EnvironmentSecrets(SecretsProvider):
    """Secrets from the process environment."""

    def lookup(self, key):
        return os.environ.get(key) or None


class DotenvSecrets(SecretsProvider):
    """Secrets from a dotenv file, falling back to the environment.

    The file is read once, lazily; a missing file is not an error since every
    secret may come from the environment instead.
    """

    def __init__(self, path, fallback: SecretsProvider | None = None):
        self.path = Path(path)
        self.fallback = fallback if fallback is not None else EnvironmentSecrets()
        self._values: dict[str, str | None] | None = None

    def _load(self):
        if self._values is None:
            if self.path.is_file():
                self._values = dict(dotenv_values(self.path))
                logger.debug(f"Loaded {len(self._values)} secret(s) from {self.path}")
            else:
                self._values = {}
        return self._values

    def lookup(self, key):
        value = self._load().get(key)
        if value:
            return value
        return self.fallback.lookup(key) if self.fallback is not None else None


class MappingSecrets(SecretsProvider):
    """In-memory secrets, for tests and embedding."""

    def __init__(self, values=None):
        self.values = dict(values or {})

    def lookup(self, key):
        return self.values.get(key)
