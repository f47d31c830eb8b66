"""Rollout planner: split each role's hosts into ordered, disjoint batches.

Planning is pure. Hosts keep their registration order, so planning the same
host set twice yields the same batches and a partially failed rollout can be
re-run idempotently.
"""

import math
import re
from dataclasses import dataclass

from deckhand.errors import InvalidBatchConfig
from deckhand.image import Release
from deckhand.targets import Host

_PERCENT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%\s*$")


@dataclass(frozen=True)
class BatchSize:
    """Either an absolute host count or a percentage of a role's hosts."""

    count: int | None = None
    percent: float | None = None

    def for_hosts(self, total: int) -> int:
        if self.percent is not None:
            return max(1, math.ceil(total * self.percent / 100))
        # A count above the role size means "everything in one batch".
        return min(self.count, total)

    def __str__(self):
        if self.percent is not None:
            return f"{self.percent:g}%"
        return str(self.count)


def parse_batch_size(value) -> BatchSize | None:
    """Parse 2, "2" or "50%". None means all hosts in one batch."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidBatchConfig(f"Invalid batch size {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidBatchConfig(f"Batch size must be positive, got {value}")
        return BatchSize(count=value)
    if isinstance(value, str):
        match = _PERCENT_RE.match(value)
        if match:
            percent = float(match.group(1))
            if percent <= 0 or percent > 100:
                raise InvalidBatchConfig(f"Batch percentage must be in (0%, 100%], got {value}")
            return BatchSize(percent=percent)
        if value.strip().isdigit():
            return parse_batch_size(int(value))
    raise InvalidBatchConfig(f"Invalid batch size {value!r}: expected a positive count or a percentage like '25%'")


@dataclass(frozen=True)
class Batch:
    """Hosts of one role updated together in one rollout step."""

    index: int
    role: str
    hosts: tuple[Host, ...]
    target: Release

    @property
    def addresses(self) -> list[str]:
        return [h.address for h in self.hosts]

    @property
    def label(self) -> str:
        return f"{self.role} batch {self.index + 1}"


@dataclass(frozen=True)
class RolloutPlan:
    """Ordered sequence of batches."""

    batches: tuple[Batch, ...]
    target: Release | None = None

    @classmethod
    def concat(cls, plans) -> "RolloutPlan":
        """Join plans that target different releases (rollback groups)."""
        plans = list(plans)
        targets = {p.target for p in plans}
        return cls(
            batches=tuple(b for p in plans for b in p.batches),
            target=targets.pop() if len(targets) == 1 else None,
        )

    def __iter__(self):
        return iter(self.batches)

    def __len__(self):
        return len(self.batches)

    def for_role(self, role: str) -> list[Batch]:
        return [b for b in self.batches if b.role == role]

    def describe(self) -> list[str]:
        """Human-readable plan lines."""
        return [f"  {b.label}: {', '.join(b.addresses)}" for b in self.batches]


class RolloutPlanner:
    """Computes rollout plans. Holds no state."""

    def plan(self, hosts, batch_size, target: Release, roles=None) -> RolloutPlan:
        """Plan batches for every role the hosts belong to.

        Args:
            hosts: hosts in registration order
            batch_size: int, numeric string, percentage string, or None for all
            target: release every batch deploys
            roles: role names in deploy order; defaults to first-seen order
        """
        size = parse_batch_size(batch_size)
        hosts = list(hosts)
        if roles is None:
            roles = []
            for host in hosts:
                for role in host.roles:
                    if role not in roles:
                        roles.append(role)

        batches = []
        for role in roles:
            role_hosts = [h for h in hosts if role in h.roles]
            if not role_hosts:
                continue
            per_batch = size.for_hosts(len(role_hosts)) if size is not None else len(role_hosts)
            for start in range(0, len(role_hosts), per_batch):
                batches.append(
                    Batch(
                        index=start // per_batch,
                        role=role,
                        hosts=tuple(role_hosts[start:start + per_batch]),
                        target=target,
                    )
                )
        return RolloutPlan(batches=tuple(batches), target=target)
