"""Partition-id extraction strategies.

An extractor turns an opaque object descriptor (a file path, object key, table
name, ...) into the non-negative partition id the ownership decision works on.
The variant is chosen by configuration through :class:`DistributionType` and
built by :func:`build_extractor`; the resolver only depends on the
:class:`PartitionIdExtractor` interface.
"""
from __future__ import annotations

import hashlib
import re
from typing import Callable, Dict, List, Optional, Pattern, Union

from .errors import InvalidConfiguration, UnparsableDescriptor


class DistributionType(str):
    PARTITION = "partition"
    OBJECT_HASH = "object_hash"

    _ALIASES = {
        "partition_in_filename": PARTITION,
        "filename": PARTITION,
        "file": PARTITION,
        "hash": OBJECT_HASH,
        "object-hash": OBJECT_HASH,
        "object_hash": OBJECT_HASH,
    }

    @classmethod
    def parse(cls, value: Union[str, "DistributionType"]) -> "DistributionType":
        if isinstance(value, DistributionType):
            return value
        if not isinstance(value, str):
            raise InvalidConfiguration(f"distribution type must be a string, got {type(value).__name__}")
        key = value.strip().lower()
        if key in (cls.PARTITION, cls.OBJECT_HASH):
            return cls(key)
        if key in cls._ALIASES:
            return cls(cls._ALIASES[key])
        raise InvalidConfiguration(f"Unknown distribution type: {value}")


class PartitionIdExtractor:
    """Interface for turning a descriptor into a partition id."""

    distribution_type: str = ""

    def __init__(self, expected_format: str) -> None:
        if not isinstance(expected_format, str):
            raise InvalidConfiguration(f"expected_format must be a string, got {type(expected_format).__name__}")
        self.expected_format = expected_format

    def extract_partition_id(self, descriptor: str) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(expected_format={self.expected_format!r})"


# ---------------------------------------------------------------------------
# Filename templates
# ---------------------------------------------------------------------------

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?::([^}]*))?\}\}")
_NUMERIC_PLACEHOLDERS = frozenset({"partition", "start_offset", "timestamp"})
_PARTITION = "partition"
# Directory prefix before the templated name and compression/format suffixes after it.
_PREFIX = r"(?:.*/)?"
_SUFFIX = r"(?:\.[A-Za-z0-9]+)*"


def _placeholder_pattern(name: str) -> str:
    base = name[len("padded_"):] if name.startswith("padded_") else name
    if base == _PARTITION:
        return rf"(?P<{_PARTITION}>\d+)"
    if base in _NUMERIC_PLACEHOLDERS:
        return r"\d+"
    return r"[^/]+?"


def compile_template(expected_format: str) -> Pattern[str]:
    """Compile a ``{{placeholder}}`` template into an anchored regex.

    Raises:
        InvalidConfiguration: the template is empty, has no ``{{partition}}``
            placeholder or names it more than once.
    """
    if not expected_format or not expected_format.strip():
        raise InvalidConfiguration("expected_format must not be empty for the partition distribution type")
    parts: List[str] = []
    position = 0
    partition_count = 0
    for match in _PLACEHOLDER_RE.finditer(expected_format):
        parts.append(re.escape(expected_format[position:match.start()]))
        name = match.group(1).lower()
        if name in (_PARTITION, f"padded_{_PARTITION}"):
            partition_count += 1
        parts.append(_placeholder_pattern(name))
        position = match.end()
    parts.append(re.escape(expected_format[position:]))
    if partition_count == 0:
        raise InvalidConfiguration(f"expected_format {expected_format!r} has no {{{{partition}}}} placeholder")
    if partition_count > 1:
        raise InvalidConfiguration(f"expected_format {expected_format!r} names {{{{partition}}}} more than once")
    prefix = "" if expected_format.startswith("/") else _PREFIX
    return re.compile(prefix + "".join(parts) + _SUFFIX)


class FilenamePatternExtractor(PartitionIdExtractor):
    """Reads the partition id embedded in a descriptor, e.g. ``topic-3-1200``."""

    distribution_type = DistributionType.PARTITION

    def __init__(self, expected_format: str) -> None:
        super().__init__(expected_format)
        self._pattern = compile_template(expected_format)

    @property
    def pattern(self) -> Pattern[str]:
        return self._pattern

    def extract_partition_id(self, descriptor: str) -> int:
        if not isinstance(descriptor, str):
            raise UnparsableDescriptor(descriptor, self.expected_format, "descriptor must be a string")
        match = self._pattern.fullmatch(descriptor)
        if match is None:
            raise UnparsableDescriptor(descriptor, self.expected_format)
        return int(match.group(_PARTITION))


# ---------------------------------------------------------------------------
# Object hash
# ---------------------------------------------------------------------------


def stable_hash(descriptor: str) -> int:
    """Process-independent non-negative hash of ``descriptor``."""
    digest = hashlib.blake2b(descriptor.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


class ObjectHashExtractor(PartitionIdExtractor):
    """Derives the partition id from a stable hash of the whole descriptor."""

    distribution_type = DistributionType.OBJECT_HASH

    def extract_partition_id(self, descriptor: str) -> int:
        if not isinstance(descriptor, str):
            raise UnparsableDescriptor(descriptor, self.expected_format, "descriptor must be a string")
        if not descriptor:
            raise UnparsableDescriptor(descriptor, self.expected_format, "descriptor is empty")
        return stable_hash(descriptor)


ExtractorFactory = Callable[[str, str], PartitionIdExtractor]

_EXTRACTORS: Dict[str, Callable[[str], PartitionIdExtractor]] = {
    DistributionType.PARTITION: FilenamePatternExtractor,
    DistributionType.OBJECT_HASH: ObjectHashExtractor,
}


def build_extractor(distribution_type: Union[str, DistributionType], expected_format: str) -> PartitionIdExtractor:
    """Build the extractor registered for ``distribution_type``."""
    parsed = DistributionType.parse(distribution_type)
    return _EXTRACTORS[parsed](expected_format)


def extract_partition_id(descriptor: str, expected_format: str, distribution_type: Optional[str] = None) -> int:
    """One-shot helper: build an extractor and apply it to ``descriptor``."""
    return build_extractor(distribution_type or DistributionType.PARTITION, expected_format).extract_partition_id(descriptor)


__all__ = [
    "DistributionType",
    "ExtractorFactory",
    "FilenamePatternExtractor",
    "ObjectHashExtractor",
    "PartitionIdExtractor",
    "build_extractor",
    "compile_template",
    "extract_partition_id",
    "stable_hash",
]
