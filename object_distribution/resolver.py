"""Distribution resolver.

One :class:`DistributionResolver` lives in each task process.  It holds the
current fleet size and expected object format as a single immutable
:class:`DistributionSnapshot`; reconfiguration builds a new snapshot and swaps
the reference under a lock, so a query always sees ``max_tasks`` and the
extractor of the same generation.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union

from .config import Config
from .errors import InvalidConfiguration
from .extractors import DistributionType, ExtractorFactory, PartitionIdExtractor, build_extractor
from .logger import StructuredLogger
from .ownership import Matcher, owned_by, owner_of, task_matches_partition, validate_max_tasks

logger = StructuredLogger.get_logger("object_distribution.resolver")


@dataclass(frozen=True)
class DistributionSnapshot:
    max_tasks: int
    expected_format: str
    distribution_type: DistributionType
    extractor: PartitionIdExtractor
    generation: int


class DistributionResolver:
    """Answers "does task T own object O?" for the current fleet size."""

    def __init__(
        self,
        max_tasks: int,
        expected_format: str,
        *,
        distribution_type: Union[str, DistributionType] = DistributionType.PARTITION,
        extractor_factory: ExtractorFactory = build_extractor,
        matcher: Matcher = task_matches_partition,
    ) -> None:
        self._lock = threading.Lock()
        self._extractor_factory = extractor_factory
        self._matcher = matcher
        self._snapshot = self._build_snapshot(max_tasks, expected_format, distribution_type, generation=0)
        logger.info(
            "distribution_initialised",
            max_tasks=self._snapshot.max_tasks,
            generation=0,
            expected_format=expected_format,
            distribution_type=str(self._snapshot.distribution_type),
        )

    @classmethod
    def from_config(cls, cfg: Optional[Config] = None, **kwargs) -> "DistributionResolver":
        cfg = cfg or Config.get_singleton()
        try:
            max_tasks = cfg.get("distribution.max_tasks", int, required=True)
            expected_format = cfg.get("distribution.expected_format", str, required=True)
            distribution_type = cfg.get("distribution.type", str, default=DistributionType.PARTITION)
        except (KeyError, TypeError) as exc:
            raise InvalidConfiguration(str(exc)) from exc
        return cls(max_tasks, expected_format, distribution_type=distribution_type, **kwargs)

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    def _build_snapshot(
        self,
        max_tasks: int,
        expected_format: str,
        distribution_type: Union[str, DistributionType],
        *,
        generation: int,
    ) -> DistributionSnapshot:
        validate_max_tasks(max_tasks)
        if not isinstance(expected_format, str):
            raise InvalidConfiguration(f"expected_format must be a string, got {type(expected_format).__name__}")
        parsed_type = DistributionType.parse(distribution_type)
        extractor = self._extractor_factory(parsed_type, expected_format)
        return DistributionSnapshot(
            max_tasks=max_tasks,
            expected_format=expected_format,
            distribution_type=parsed_type,
            extractor=extractor,
            generation=generation,
        )

    @property
    def snapshot(self) -> DistributionSnapshot:
        return self._snapshot

    @property
    def max_tasks(self) -> int:
        return self._snapshot.max_tasks

    @property
    def expected_format(self) -> str:
        return self._snapshot.expected_format

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    @property
    def matcher(self) -> Matcher:
        return self._matcher

    def reconfigure(
        self,
        max_tasks: int,
        expected_format: str,
        *,
        distribution_type: Optional[Union[str, DistributionType]] = None,
    ) -> DistributionSnapshot:
        """Atomically replace the fleet size and expected format.

        Call on startup and whenever the fleet size or naming convention
        changes.  ``distribution_type`` defaults to the current one.  When
        validation fails the previous configuration stays in effect.

        Raises:
            InvalidConfiguration: ``max_tasks`` is not positive or the format
                cannot be used by the selected extractor.
        """
        with self._lock:
            current = self._snapshot
            try:
                snapshot = self._build_snapshot(
                    max_tasks,
                    expected_format,
                    distribution_type if distribution_type is not None else current.distribution_type,
                    generation=current.generation + 1,
                )
            except InvalidConfiguration as exc:
                logger.warning(
                    "distribution_reconfigure_rejected",
                    requested_max_tasks=max_tasks,
                    expected_format=expected_format,
                    max_tasks=current.max_tasks,
                    generation=current.generation,
                    error_message=str(exc),
                )
                raise
            self._snapshot = snapshot
        logger.info(
            "distribution_reconfigured",
            max_tasks=snapshot.max_tasks,
            previous_max_tasks=current.max_tasks,
            generation=snapshot.generation,
            expected_format=snapshot.expected_format,
            distribution_type=str(snapshot.distribution_type),
        )
        return snapshot

    reconfigure_distribution_strategy = reconfigure

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def partition_id_of(self, object_descriptor: str) -> int:
        return self._snapshot.extractor.extract_partition_id(object_descriptor)

    def is_part_of_task(self, task_id: int, object_descriptor: str) -> bool:
        """Return ``True`` when ``task_id`` owns ``object_descriptor``.

        Raises:
            UnparsableDescriptor: the descriptor does not match the current
                expected format.
            InvalidInput: ``task_id`` is negative.
        """
        snapshot = self._snapshot
        partition_id = snapshot.extractor.extract_partition_id(object_descriptor)
        owned = owned_by(task_id, snapshot.max_tasks, partition_id, matcher=self._matcher)
        if logger.is_enabled_for(logging.DEBUG):
            logger.debug(
                "ownership_decided",
                task_id=task_id,
                max_tasks=snapshot.max_tasks,
                generation=snapshot.generation,
                partition_id=partition_id,
                descriptor=object_descriptor,
                owned=owned,
            )
        return owned

    def owned_by(self, task_id: int, partition_id: int) -> bool:
        return owned_by(task_id, self._snapshot.max_tasks, partition_id, matcher=self._matcher)

    def owner_of_partition(self, partition_id: int, *, snapshot: Optional[DistributionSnapshot] = None) -> int:
        """Return the single task that owns ``partition_id`` under ``snapshot`` (default: current).

        Raises:
            InvalidConfiguration: the matcher gives the partition no owner or several.
        """
        snapshot = snapshot or self._snapshot
        max_tasks = snapshot.max_tasks
        owner = owner_of(max_tasks, partition_id)
        if owned_by(owner, max_tasks, partition_id, matcher=self._matcher):
            return owner
        # A custom matcher moved ownership; fall back to asking every task.
        owners = [task_id for task_id in range(max_tasks) if owned_by(task_id, max_tasks, partition_id, matcher=self._matcher)]
        if len(owners) != 1:
            raise InvalidConfiguration(f"partition {partition_id} has {len(owners)} owners in a fleet of {max_tasks}")
        return owners[0]

    def owner_of_descriptor(self, object_descriptor: str) -> int:
        snapshot = self._snapshot
        return self.owner_of_partition(snapshot.extractor.extract_partition_id(object_descriptor), snapshot=snapshot)

    def __repr__(self) -> str:
        snapshot = self._snapshot
        return (
            f"DistributionResolver(max_tasks={snapshot.max_tasks}, expected_format={snapshot.expected_format!r}, "
            f"distribution_type={str(snapshot.distribution_type)!r}, generation={snapshot.generation})"
        )


__all__ = ["DistributionResolver", "DistributionSnapshot"]
