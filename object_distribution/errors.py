"""Error kinds raised by the distribution resolver."""
from __future__ import annotations

from typing import Optional


class DistributionError(Exception):
    """Base class for every failure surfaced by :mod:`object_distribution`."""


class InvalidConfiguration(DistributionError, ValueError):
    """Raised when a fleet size or expected format cannot be applied."""


class InvalidInput(DistributionError, ValueError):
    """Raised for negative or non-integer task / partition identifiers."""


class UnparsableDescriptor(DistributionError, ValueError):
    """Raised when an object descriptor does not match the expected format."""

    def __init__(self, descriptor: object, expected_format: Optional[str] = None, reason: Optional[str] = None) -> None:
        self.descriptor = descriptor
        self.expected_format = expected_format
        self.reason = reason
        message = f"descriptor {descriptor!r} does not match expected format {expected_format!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
