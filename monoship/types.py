"""Shared type definitions for monoship.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class BuildStrategy(str, Enum):
    """Build strategy kind of a service."""

    COMPILED = "compiled"
    BUNDLED = "bundled"
    PASSTHROUGH = "passthrough"


class ArtifactKind(str, Enum):
    """Kind of a build artifact."""

    FILE = "file"
    DIRECTORY = "directory"


class ReleaseState(str, Enum):
    """State of a single service release."""

    PENDING = "pending"
    BUILDING = "building"
    PACKAGING = "packaging"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition can happen from this state."""
        return self in (ReleaseState.SUCCEEDED, ReleaseState.FAILED)


class FailurePolicy(str, Enum):
    """How the orchestrator reacts to one service failing."""

    ISOLATE = "isolate"
    FAIL_FAST = "fail-fast"


@dataclass(frozen=True)
class Platform:
    """Target OS/architecture pair, e.g. ``linux/arm64``."""

    os: str
    arch: str

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse an ``os/arch`` string.

        Args:
            value: Platform string such as ``linux/amd64``.

        Returns:
            Platform instance.

        Raises:
            ValueError: If the string is not of the form ``os/arch``.
        """
        parts = value.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid platform '{value}', expected 'os/arch'")
        return cls(os=parts[0], arch=parts[1])

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


__all__ = [
    "ArtifactKind",
    "BuildStrategy",
    "FailurePolicy",
    "Platform",
    "ReleaseState",
]
