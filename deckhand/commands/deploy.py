"""Deploy command: roll a new release out across all targeted hosts."""

import asyncio
import contextlib
import logging
import signal
import sys

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment, run_deploy
from deckhand.deploy.rollout import RolloutStatus

logger = logging.getLogger(__name__)


async def _handle_deploy(args):
    params = params_from_args(args)
    deployment = Deployment.from_params(params)

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        # Ctrl-C stops at the next batch boundary instead of mid-cutover.
        loop.add_signal_handler(signal.SIGINT, deployment.engine.request_abort)

    report = await run_deploy(
        deployment,
        version=params.version,
        batch_size=params.batch_size,
        verify_image=params.verify_image,
    )
    return report.status is RolloutStatus.SUCCEEDED


def handle_deploy(args):
    """Handle the deploy command."""
    if not run_command(_handle_deploy(args)):
        sys.exit(1)


def register_deploy_command(subparsers):
    """Register the deploy subcommand."""
    parser = subparsers.add_parser("deploy", help="Deploy a new release with zero-downtime cutover")
    add_common_args(parser)
    parser.add_argument("--version", default=None, help="Release version tag (default: git HEAD)")
    parser.add_argument("--batch-size", default=None, help="Hosts per batch: a count or a percentage (overrides boot.limit)")
    parser.add_argument("--verify-image", action="store_true", help="Check the image tag exists in the registry first")
    parser.set_defaults(func=handle_deploy)
