"""Per-host rollout states."""

from enum import Enum


class HostState(str, Enum):
    PENDING = "pending"
    PULLING = "pulling"
    STARTING = "starting"
    HEALTH_CHECKING = "health_checking"
    CUTTING_OVER = "cutting_over"
    DRAINING = "draining"
    STOPPED = "stopped"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (HostState.STOPPED, HostState.ROLLED_BACK, HostState.ABORTED)
