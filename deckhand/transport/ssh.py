"""SSH transport: run commands and copy files on remote hosts via ssh/scp."""

import asyncio
import logging
import os

from deckhand.errors import TransportError
from deckhand.transport.types import CommandResult, Transport

logger = logging.getLogger(__name__)

# ssh exits with 255 when the connection itself failed
SSH_CONNECTION_FAILED = 255

_COMMON_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "BatchMode=yes",
    "-o", "ServerAliveInterval=60",
    "-o", "ServerAliveCountMax=5",
]


def ssh_base_args(host):
    """Build base SSH arguments for a Host."""
    args = ["ssh", *_COMMON_OPTIONS]
    if host.key:
        args += ["-i", os.path.expanduser(host.key)]
    if host.port and host.port != 22:
        args += ["-p", str(host.port)]
    args.append(host.ssh_address)
    return args


def scp_args(host, local_path, remote_path):
    """Build SCP arguments for copying local_path to host:remote_path."""
    args = ["scp", *_COMMON_OPTIONS]
    if host.key:
        args += ["-i", os.path.expanduser(host.key)]
    if host.port and host.port != 22:
        args += ["-P", str(host.port)]
    args += [local_path, f"{host.ssh_address}:{remote_path}"]
    return args


class SSHTransport(Transport):
    """Shells out to the system ssh/scp binaries.

    A shared semaphore bounds concurrent sessions across hosts; per-host
    exclusivity for a transition is provided by ``session()``.
    """

    def __init__(self, max_connections=16, dry_run=False):
        super().__init__()
        self.dry_run = dry_run
        self._pool = asyncio.Semaphore(max(1, max_connections))

    async def _exec(self, host, args, timeout, description):
        async with self._pool:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise TransportError(host, f"'{args[0]}' not found. Is it installed and on PATH?") from e
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except TimeoutError as e:
                logger.error(f"Command timed out after {timeout}s on {host}: {description}")
                proc.kill()
                await proc.wait()
                raise TransportError(host, f"timed out after {timeout}s: {description}") from e

        stdout = stdout_bytes.decode() if stdout_bytes else ""
        stderr = stderr_bytes.decode() if stderr_bytes else ""
        if proc.returncode == SSH_CONNECTION_FAILED:
            raise TransportError(host, f"connection failed: {stderr.strip() or 'ssh exited 255'}")
        return CommandResult(proc.returncode, stdout, stderr)

    async def run(self, host, command, timeout=600):
        if self.dry_run:
            logger.info(f"[dry-run] ssh {host.ssh_address}: {command}")
            return CommandResult(0)
        logger.debug(f"ssh {host.ssh_address}: {command}")
        args = ssh_base_args(host)
        args.append(command)
        return await self._exec(host, args, timeout, command)

    async def copy(self, host, local_path, remote_path, timeout=300):
        if self.dry_run:
            logger.info(f"[dry-run] scp {os.path.basename(local_path)} -> {host.ssh_address}:{remote_path}")
            return
        result = await self._exec(host, scp_args(host, local_path, remote_path), timeout, f"scp {remote_path}")
        if not result.ok:
            raise TransportError(host, f"scp to {remote_path} failed: {result.stderr.strip()}")
