"""Transport adapters: remote execution over SSH and local shell helpers."""

from deckhand.transport.shell import run_shell_cmd
from deckhand.transport.ssh import SSHTransport, scp_args, ssh_base_args
from deckhand.transport.types import CommandResult, Transport

__all__ = [
    "CommandResult",
    "SSHTransport",
    "Transport",
    "run_shell_cmd",
    "scp_args",
    "ssh_base_args",
]
