"""Pure ownership decisions.

The three functions are layered by composition: :func:`owned_by` chooses
between the identity branch and the modulo branch, and the modulo branch
delegates its final comparison to the identity matcher.  A caller that needs a
different low-level comparison passes its own ``matcher`` instead of
subclassing anything.
"""
from __future__ import annotations

from typing import Callable

from .errors import InvalidConfiguration, InvalidInput

Matcher = Callable[[int, int], bool]


def _require_index(name: str, value: object) -> int:
    # bool is an int subclass; True must not silently become task 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative, got {value}")
    return value


def validate_max_tasks(max_tasks: object) -> int:
    if isinstance(max_tasks, bool) or not isinstance(max_tasks, int):
        raise InvalidConfiguration(f"max_tasks must be an integer, got {type(max_tasks).__name__}")
    if max_tasks <= 0:
        raise InvalidConfiguration(f"max_tasks must be positive, got {max_tasks}")
    return max_tasks


def task_matches_partition(task_id: int, partition_id: int) -> bool:
    """Return ``True`` when ``task_id`` is the identity owner of ``partition_id``.

    Task and partition ids both start at 0.
    """
    return task_id == partition_id


def task_matches_mod_of_partition_and_max_task(
    task_id: int,
    max_tasks: int,
    partition_id: int,
    *,
    matcher: Matcher = task_matches_partition,
) -> bool:
    """Return ``True`` when ``task_id`` owns ``partition_id`` by residue."""
    return matcher(task_id, partition_id % max_tasks)


def owned_by(task_id: int, max_tasks: int, partition_id: int, *, matcher: Matcher = task_matches_partition) -> bool:
    """Decide whether ``task_id`` owns ``partition_id`` in a fleet of ``max_tasks``.

    Partitions below the fleet size are assigned by identity; larger ids are
    spread round-robin by ``partition_id % max_tasks``.  For any valid
    ``(max_tasks, partition_id)`` exactly one task in ``[0, max_tasks)``
    returns ``True``.

    Raises:
        InvalidConfiguration: ``max_tasks`` is not a positive integer.
        InvalidInput: ``task_id`` or ``partition_id`` is negative or not an integer.
    """
    validate_max_tasks(max_tasks)
    _require_index("task_id", task_id)
    _require_index("partition_id", partition_id)
    if partition_id < max_tasks:
        return matcher(task_id, partition_id)
    return task_matches_mod_of_partition_and_max_task(task_id, max_tasks, partition_id, matcher=matcher)


def owner_of(max_tasks: int, partition_id: int) -> int:
    """Return the single task id owning ``partition_id``."""
    validate_max_tasks(max_tasks)
    _require_index("partition_id", partition_id)
    if partition_id < max_tasks:
        return partition_id
    return partition_id % max_tasks


__all__ = [
    "Matcher",
    "owned_by",
    "owner_of",
    "task_matches_mod_of_partition_and_max_task",
    "task_matches_partition",
    "validate_max_tasks",
]
