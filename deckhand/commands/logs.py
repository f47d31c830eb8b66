"""Logs command: tail the current container's logs on each host."""

import logging

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment, run_logs

logger = logging.getLogger(__name__)


async def _handle_logs(args):
    deployment = Deployment.from_params(params_from_args(args))
    output = await run_logs(deployment, role=args.role, lines=args.lines, grep=args.grep)
    for label, text in output.items():
        logger.info(f"── {label} ──")
        logger.info(text.rstrip("\n"))


def handle_logs(args):
    """Handle the logs command."""
    run_command(_handle_logs(args))


def register_logs_command(subparsers):
    """Register the logs subcommand."""
    parser = subparsers.add_parser("logs", help="Show container logs from each host")
    add_common_args(parser)
    parser.add_argument("--role", default=None, help="Only this role")
    parser.add_argument("-n", "--lines", type=int, default=100, help="Lines per host (default: 100)")
    parser.add_argument("--grep", default=None, help="Only lines matching this pattern")
    parser.set_defaults(func=handle_logs)
