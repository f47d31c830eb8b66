"""Transport capability: run a command on a host, copy a file to a host."""

import asyncio
import contextlib
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a remote command that was delivered to the host."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Transport(ABC):
    """Remote execution capability the orchestration core depends on.

    Implementations raise ``TransportError`` when a command could not be
    delivered; a delivered command that fails is a ``CommandResult`` with a
    non-zero exit code.
    """

    def __init__(self):
        self._session_locks: dict[str, asyncio.Lock] = {}

    @abstractmethod
    async def run(self, host, command: str, timeout: float = 600) -> CommandResult:
        """Run a shell command on the host."""
        ...

    @abstractmethod
    async def copy(self, host, local_path: str, remote_path: str, timeout: float = 300) -> None:
        """Copy a local file to the host."""
        ...

    @contextlib.asynccontextmanager
    async def session(self, host):
        """Hold the host exclusively for one task's sequence of commands."""
        lock = self._session_locks.setdefault(str(host), asyncio.Lock())
        async with lock:
            yield

    async def write_file(self, host, remote_path: str, content: str) -> None:
        """Write content to a remote file via a local temp file and copy()."""
        with tempfile.NamedTemporaryFile(mode="w", suffix="_deckhand", delete=False) as f:
            f.write(content)
            tmp_path = f.name
        try:
            os.chmod(tmp_path, 0o600)
            await self.copy(host, tmp_path, remote_path)
        finally:
            os.unlink(tmp_path)
