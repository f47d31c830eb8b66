"""Plan command: show the batch plan for a deploy without touching hosts."""

import logging

from deckhand.commands import add_common_args, params_from_args, run_command
from deckhand.deploy.orchestrate import Deployment
from deckhand.image import resolve_release

logger = logging.getLogger(__name__)


async def _handle_plan(args):
    params = params_from_args(args)
    deployment = Deployment.from_params(params)
    config = deployment.config
    release = await resolve_release(config.image, config.registry.server, version=params.version or "planned")
    plan = deployment.plan(release, params.batch_size)
    logger.info(f"{len(plan)} batch(es) for {config.service}:")
    for line in plan.describe():
        logger.info(line)


def handle_plan(args):
    """Handle the plan command."""
    run_command(_handle_plan(args))


def register_plan_command(subparsers):
    """Register the plan subcommand."""
    parser = subparsers.add_parser("plan", help="Print the rollout batches without deploying")
    add_common_args(parser)
    parser.add_argument("--version", default=None, help="Release version shown in the plan")
    parser.add_argument("--batch-size", default=None, help="Hosts per batch: a count or a percentage")
    parser.set_defaults(func=handle_plan)
