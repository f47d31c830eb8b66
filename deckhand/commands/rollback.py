"""Rollback command: restore the previous (or a named) release."""

import sys

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment, run_rollback
from deckhand.deploy.rollout import RolloutStatus


async def _handle_rollback(args):
    params = params_from_args(args)
    deployment = Deployment.from_params(params)
    report = await run_rollback(deployment, version=args.version, batch_size=params.batch_size)
    return report.status is RolloutStatus.SUCCEEDED


def handle_rollback(args):
    """Handle the rollback command."""
    if not run_command(_handle_rollback(args)):
        sys.exit(1)


def register_rollback_command(subparsers):
    """Register the rollback subcommand."""
    parser = subparsers.add_parser("rollback", help="Roll back to the previous or a given release")
    add_common_args(parser)
    parser.add_argument("version", nargs="?", default=None, help="Release version (default: each host's previous)")
    parser.add_argument("--batch-size", default=None, help="Hosts per batch (default: all at once)")
    parser.set_defaults(func=handle_rollback)
