"""Status command: releases, health and routes per host."""

import logging

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment, run_status

logger = logging.getLogger(__name__)


async def _handle_status(args):
    deployment = Deployment.from_params(params_from_args(args))
    for line in await run_status(deployment, live=not args.offline):
        logger.info(line)


def handle_status(args):
    """Handle the status command."""
    run_command(_handle_status(args))


def register_status_command(subparsers):
    """Register the status subcommand."""
    parser = subparsers.add_parser("status", help="Show deployed releases, health and routes")
    add_common_args(parser)
    parser.add_argument("--offline", action="store_true", help="Only show recorded state, do not query hosts")
    parser.set_defaults(func=handle_status)
