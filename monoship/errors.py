"""Error taxonomy for monoship.

Every error carries a stable ``code`` so that reports and the CLI can
distinguish a service that did not build from one that built but was not
distributed.
"""

from __future__ import annotations

from pathlib import Path

CONFIGURATION_ERROR = "configuration_error"
BUILD_ERROR = "build_failed"
PUBLISH_ERROR = "publish_failed"
CANCELLED = "cancelled"
INTERNAL_ERROR = "internal_error"

# Number of trailing output lines kept on errors
OUTPUT_TAIL_LINES = 40


def tail(output: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    """Return the last ``lines`` lines of captured command output."""
    return "\n".join(output.splitlines()[-lines:])


class MonoshipError(Exception):
    """Base error for monoship operations."""

    def __init__(self, message: str, code: str = INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(MonoshipError):
    """Raised for malformed or contradictory service configuration.

    Raised before any build starts and never retried.
    """

    def __init__(
        self,
        message: str,
        problems: list[str] | None = None,
        code: str = CONFIGURATION_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.problems = problems or [message]


class BuildExecutionError(MonoshipError):
    """Raised when a staged command fails or an extracted path is missing."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        output: str = "",
        log_path: Path | None = None,
        code: str = BUILD_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.output = output
        self.log_path = log_path


class PublishError(MonoshipError):
    """Raised when registry authentication or an image push fails."""

    def __init__(
        self,
        message: str,
        reference: str | None = None,
        output: str = "",
        log_path: Path | None = None,
        code: str = PUBLISH_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.reference = reference
        self.output = output
        self.log_path = log_path


__all__ = [
    "BUILD_ERROR",
    "CANCELLED",
    "CONFIGURATION_ERROR",
    "INTERNAL_ERROR",
    "PUBLISH_ERROR",
    "BuildExecutionError",
    "ConfigurationError",
    "MonoshipError",
    "PublishError",
    "tail",
]
