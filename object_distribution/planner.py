"""Fleet-wide views of the ownership decision.

A single task only ever needs :meth:`DistributionResolver.is_part_of_task`.
Operators and tests, however, want to see the whole picture: which task owns
every object in a listing, how evenly the load spreads, and which objects move
when the fleet is resized.  :func:`plan_assignment` and :func:`reshard` answer
those questions with the same resolver the tasks use.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from tqdm import tqdm

from .errors import UnparsableDescriptor
from .logger import StructuredLogger
from .resolver import DistributionResolver

logger = StructuredLogger.get_logger("object_distribution.planner")

_ON_UNPARSABLE = ("skip", "raise")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssignmentStatistics:
    object_count: int
    unparsable_count: int
    min_per_task: int
    max_per_task: int
    idle_tasks: int
    gini_coefficient: float


@dataclass(frozen=True)
class AssignmentPlan:
    max_tasks: int
    expected_format: str
    distribution_type: str
    generation: int
    owners: Mapping[str, int]
    unparsable: Tuple[str, ...]
    statistics: AssignmentStatistics
    per_task: Tuple[int, ...] = field(default_factory=tuple)

    def objects_for(self, task_id: int) -> List[str]:
        return [descriptor for descriptor, owner in self.owners.items() if owner == task_id]

    def summary(self) -> Dict[str, Any]:
        return {
            "max_tasks": self.max_tasks,
            "expected_format": self.expected_format,
            "distribution_type": self.distribution_type,
            "generation": self.generation,
            "per_task": list(self.per_task),
            "unparsable": list(self.unparsable),
            "statistics": dataclasses.asdict(self.statistics),
        }

    def ensure_valid(self) -> None:
        if len(self.per_task) != self.max_tasks:
            raise ValueError("per_task length does not match max_tasks")
        for descriptor, owner in self.owners.items():
            if not 0 <= owner < self.max_tasks:
                raise ValueError(f"owner {owner} of {descriptor!r} outside [0, {self.max_tasks})")
        if sum(self.per_task) != len(self.owners):
            raise ValueError("per_task counts do not cover every object exactly once")


@dataclass(frozen=True)
class ReshardDiff:
    previous_max_tasks: int
    max_tasks: int
    moved: Mapping[str, Tuple[int, int]]
    unchanged: int
    unparsable: Tuple[str, ...] = ()

    @property
    def moved_ratio(self) -> float:
        total = len(self.moved) + self.unchanged
        return len(self.moved) / total if total else 0.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _compute_gini(values: Sequence[float]) -> float:
    filtered = [v for v in values if v >= 0]
    if not filtered:
        return 0.0
    sorted_vals = sorted(filtered)
    cum = 0.0
    for i, val in enumerate(sorted_vals, 1):
        cum += i * val
    total = sum(sorted_vals)
    n = len(sorted_vals)
    if total == 0:
        return 0.0
    return (2 * cum) / (n * total) - (n + 1) / n


def _check_policy(on_unparsable: str) -> None:
    if on_unparsable not in _ON_UNPARSABLE:
        raise ValueError(f"on_unparsable must be one of {_ON_UNPARSABLE}, got {on_unparsable!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def filter_owned(
    resolver: DistributionResolver,
    task_id: int,
    descriptors: Iterable[str],
    *,
    on_unparsable: str = "skip",
) -> Iterator[str]:
    """Yield the descriptors owned by ``task_id``.

    Descriptors that do not match the expected format are skipped and logged
    unless ``on_unparsable="raise"``.
    """
    _check_policy(on_unparsable)
    for descriptor in descriptors:
        try:
            owned = resolver.is_part_of_task(task_id, descriptor)
        except UnparsableDescriptor as exc:
            if on_unparsable == "raise":
                raise
            logger.warning("descriptor_skipped", task_id=task_id, descriptor=descriptor, error_message=str(exc))
            continue
        if owned:
            yield descriptor


def plan_assignment(
    resolver: DistributionResolver,
    descriptors: Iterable[str],
    *,
    show_progress: bool = False,
    on_unparsable: str = "skip",
) -> AssignmentPlan:
    """Compute the owner of every descriptor under the resolver's configuration."""
    _check_policy(on_unparsable)
    snapshot = resolver.snapshot
    items = list(descriptors)
    owners: Dict[str, int] = {}
    unparsable: List[str] = []
    seen_unparsable: Set[str] = set()
    per_task = [0] * snapshot.max_tasks
    for descriptor in tqdm(items, desc="plan_assignment", unit="obj", disable=not show_progress):
        if descriptor in owners or descriptor in seen_unparsable:
            continue
        try:
            partition_id = snapshot.extractor.extract_partition_id(descriptor)
        except UnparsableDescriptor:
            if on_unparsable == "raise":
                raise
            unparsable.append(descriptor)
            seen_unparsable.add(descriptor)
            continue
        owner = resolver.owner_of_partition(partition_id, snapshot=snapshot)
        owners[descriptor] = owner
        per_task[owner] += 1
    stats = AssignmentStatistics(
        object_count=len(owners),
        unparsable_count=len(unparsable),
        min_per_task=min(per_task),
        max_per_task=max(per_task),
        idle_tasks=sum(1 for count in per_task if count == 0),
        gini_coefficient=_compute_gini([float(c) for c in per_task]),
    )
    plan = AssignmentPlan(
        max_tasks=snapshot.max_tasks,
        expected_format=snapshot.expected_format,
        distribution_type=str(snapshot.distribution_type),
        generation=snapshot.generation,
        owners=owners,
        unparsable=tuple(unparsable),
        statistics=stats,
        per_task=tuple(per_task),
    )
    plan.ensure_valid()
    if unparsable:
        logger.warning("plan_unparsable_descriptors", max_tasks=plan.max_tasks, count=len(unparsable))
    logger.info("assignment_planned", max_tasks=plan.max_tasks, generation=plan.generation, **dataclasses.asdict(stats))
    return plan


def reshard(plan: AssignmentPlan, resolver: DistributionResolver, *, reason: Optional[str] = None) -> ReshardDiff:
    """Compare ``plan`` with the ownership under the resolver's current configuration.

    Objects that no longer match the (possibly changed) expected format are
    reported in ``ReshardDiff.unparsable`` rather than as moved.
    """
    snapshot = resolver.snapshot
    moved: Dict[str, Tuple[int, int]] = {}
    unparsable: List[str] = []
    unchanged = 0
    for descriptor, previous in plan.owners.items():
        try:
            partition_id = snapshot.extractor.extract_partition_id(descriptor)
        except UnparsableDescriptor:
            unparsable.append(descriptor)
            continue
        current = resolver.owner_of_partition(partition_id, snapshot=snapshot)
        if current == previous:
            unchanged += 1
        else:
            moved[descriptor] = (previous, current)
    diff = ReshardDiff(
        previous_max_tasks=plan.max_tasks,
        max_tasks=snapshot.max_tasks,
        moved=moved,
        unchanged=unchanged,
        unparsable=tuple(unparsable),
    )
    logger.info(
        "assignment_resharded",
        reason=reason,
        previous_max_tasks=plan.max_tasks,
        max_tasks=snapshot.max_tasks,
        generation=snapshot.generation,
        moved=len(moved),
        unchanged=unchanged,
        unparsable=len(unparsable),
    )
    return diff


__all__ = [
    "AssignmentPlan",
    "AssignmentStatistics",
    "ReshardDiff",
    "filter_owned",
    "plan_assignment",
    "reshard",
]
