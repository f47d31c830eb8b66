"""Accessory command: boot or remove long-lived auxiliary containers."""

import sys

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment, boot_accessory, remove_accessory


async def _handle_accessory(args):
    deployment = Deployment.from_params(params_from_args(args))
    if args.action == "boot":
        return await boot_accessory(deployment, args.name)
    return await remove_accessory(deployment, args.name)


def handle_accessory(args):
    """Handle the accessory command."""
    if not run_command(_handle_accessory(args)):
        sys.exit(1)


def register_accessory_command(subparsers):
    """Register the accessory subcommand."""
    parser = subparsers.add_parser("accessory", help="Boot or remove an accessory (database, cache)")
    parser.add_argument("action", choices=["boot", "remove"], help="What to do")
    parser.add_argument("name", help="Accessory name from the descriptor")
    add_common_args(parser)
    parser.set_defaults(func=handle_accessory)
