"""CLI commands: shared argument handling and error reporting."""

import asyncio
import logging
import sys

from deckhand.config.loader import DEFAULT_CONFIG_FILE
from deckhand.deploy.params import DeployParams
from deckhand.errors import Aborted, DeckhandError

logger = logging.getLogger(__name__)


def _split(values):
    """--roles web,job --roles worker -> [web, job, worker]"""
    result = []
    for value in values or []:
        result += [v.strip() for v in value.split(",") if v.strip()]
    return result


def add_common_args(parser):
    """Arguments shared by every command that targets a deployment."""
    parser.add_argument("-c", "--config-file", default=DEFAULT_CONFIG_FILE, help="Deployment descriptor path")
    parser.add_argument("-d", "--destination", default=None, help="Destination overlay (e.g. staging)")
    parser.add_argument("-r", "--roles", action="append", help="Only these roles (comma-separated, wildcards ok)")
    parser.add_argument("-H", "--hosts", action="append", help="Only these hosts (comma-separated, wildcards ok)")
    parser.add_argument("--dry-run", action="store_true", help="Print remote commands without executing")


def params_from_args(args) -> DeployParams:
    return DeployParams(
        config_file=args.config_file,
        destination=args.destination,
        roles=_split(args.roles),
        hosts=_split(args.hosts),
        version=getattr(args, "version", None),
        batch_size=getattr(args, "batch_size", None),
        dry_run=args.dry_run,
        verify_image=getattr(args, "verify_image", False),
    )


def run_command(coro):
    """Run a command coroutine; report deckhand errors and exit non-zero."""
    try:
        return asyncio.run(coro)
    except Aborted as e:
        logger.error(str(e))
        sys.exit(1)
    except (DeckhandError, FileNotFoundError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
