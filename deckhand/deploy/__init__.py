"""Deploy library: planning, container lifecycle, proxy cutover, rollout and rollback."""

from deckhand.deploy.lifecycle import LifecycleDriver, TransitionOutcome, TransitionResult
from deckhand.deploy.orchestrate import (
    Deployment,
    boot_accessory,
    remove_accessory,
    run_deploy,
    run_logs,
    run_rollback,
    run_status,
)
from deckhand.deploy.params import DeployParams
from deckhand.deploy.planner import Batch, BatchSize, RolloutPlan, RolloutPlanner, parse_batch_size
from deckhand.deploy.proxy import ProxyReconciler
from deckhand.deploy.rollback import RollbackController
from deckhand.deploy.rollout import HostReport, RolloutEngine, RolloutReport, RolloutStatus
from deckhand.deploy.states import HostState

__all__ = [
    "Batch",
    "BatchSize",
    "DeployParams",
    "Deployment",
    "HostReport",
    "HostState",
    "LifecycleDriver",
    "ProxyReconciler",
    "RollbackController",
    "RolloutEngine",
    "RolloutPlan",
    "RolloutPlanner",
    "RolloutReport",
    "RolloutStatus",
    "TransitionOutcome",
    "TransitionResult",
    "boot_accessory",
    "parse_batch_size",
    "remove_accessory",
    "run_deploy",
    "run_logs",
    "run_rollback",
    "run_status",
]
