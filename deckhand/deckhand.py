#!/usr/bin/env python3
"""Zero-downtime container deployment — CLI entrypoint."""

import argparse

from deckhand.commands.accessory import register_accessory_command
from deckhand.commands.deploy import register_deploy_command
from deckhand.commands.logs import register_logs_command
from deckhand.commands.plan import register_plan_command
from deckhand.commands.rollback import register_rollback_command
from deckhand.commands.status import register_status_command
from deckhand.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Zero-downtime container deployments over SSH")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show every remote command")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_deploy_command(subparsers)
    register_rollback_command(subparsers)
    register_status_command(subparsers)
    register_logs_command(subparsers)
    register_plan_command(subparsers)
    register_accessory_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
