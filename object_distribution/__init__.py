"""Coordination-free partition ownership for fleets of worker tasks."""

from .config import Config
from .errors import DistributionError, InvalidConfiguration, InvalidInput, UnparsableDescriptor
from .extractors import (
    DistributionType,
    FilenamePatternExtractor,
    ObjectHashExtractor,
    PartitionIdExtractor,
    build_extractor,
    extract_partition_id,
)
from .logger import StructuredLogger
from .ownership import owned_by, owner_of, task_matches_mod_of_partition_and_max_task, task_matches_partition
from .planner import AssignmentPlan, AssignmentStatistics, ReshardDiff, filter_owned, plan_assignment, reshard
from .resolver import DistributionResolver, DistributionSnapshot

__all__ = [
    "AssignmentPlan",
    "AssignmentStatistics",
    "Config",
    "DistributionError",
    "DistributionResolver",
    "DistributionSnapshot",
    "DistributionType",
    "FilenamePatternExtractor",
    "InvalidConfiguration",
    "InvalidInput",
    "ObjectHashExtractor",
    "PartitionIdExtractor",
    "ReshardDiff",
    "StructuredLogger",
    "UnparsableDescriptor",
    "build_extractor",
    "extract_partition_id",
    "filter_owned",
    "owned_by",
    "owner_of",
    "plan_assignment",
    "reshard",
    "task_matches_mod_of_partition_and_max_task",
    "task_matches_partition",
]
