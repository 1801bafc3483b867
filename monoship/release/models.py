"""Release state and result models.

A ServiceRelease tracks one service through
``pending -> building -> packaging -> publishing -> succeeded|failed``.
Its terminal outcome is a PublishResult; the orchestrator aggregates them,
in catalog order, into a ReleaseReport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from monoship.builds.models import Artifact, BuiltImage
from monoship.catalog.schema import ServiceDescriptor
from monoship.publish import PublishedReference
from monoship.types import ReleaseState

ALLOWED_TRANSITIONS: dict[ReleaseState, frozenset[ReleaseState]] = {
    ReleaseState.PENDING: frozenset({ReleaseState.BUILDING, ReleaseState.FAILED}),
    ReleaseState.BUILDING: frozenset({ReleaseState.PACKAGING, ReleaseState.FAILED}),
    ReleaseState.PACKAGING: frozenset({ReleaseState.PUBLISHING, ReleaseState.FAILED}),
    ReleaseState.PUBLISHING: frozenset({ReleaseState.SUCCEEDED, ReleaseState.FAILED}),
    ReleaseState.SUCCEEDED: frozenset(),
    ReleaseState.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised on a state transition the release state machine forbids."""

    def __init__(self, current: ReleaseState, target: ReleaseState) -> None:
        super().__init__(f"Invalid transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass(frozen=True)
class PublishResult:
    """Per-service outcome of a release.

    Attributes:
        service: Service name.
        repository: Target image repository.
        state: Terminal state (succeeded or failed).
        references: Pushed references (success only).
        error_kind: Error code (failure only).
        error_message: Error detail (failure only).
        failed_stage: State the service was in when it failed.
        log_path: Log file with captured output, if any.
    """

    service: str
    repository: str
    state: ReleaseState
    references: tuple[PublishedReference, ...] = ()
    error_kind: str | None = None
    error_message: str | None = None
    failed_stage: ReleaseState | None = None
    log_path: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the service was built and published."""
        return self.state == ReleaseState.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "service": self.service,
            "repository": self.repository,
            "state": self.state.value,
        }
        if self.succeeded:
            data["references"] = [r.reference for r in self.references]
        else:
            data["error"] = {
                "kind": self.error_kind,
                "message": self.error_message,
                "stage": self.failed_stage.value if self.failed_stage else None,
            }
            if self.log_path:
                data["error"]["log_path"] = self.log_path
        return data


@dataclass
class ServiceRelease:
    """Mutable progress of one service through the release pipeline.

    Owned by exactly one orchestrator task.
    """

    descriptor: ServiceDescriptor
    state: ReleaseState = ReleaseState.PENDING
    history: list[tuple[ReleaseState, datetime]] = field(default_factory=list)
    artifact: Artifact | None = None
    built_image: BuiltImage | None = None
    result: PublishResult | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state, datetime.now(timezone.utc)))

    @property
    def name(self) -> str:
        """Service name."""
        return self.descriptor.name

    def transition(self, target: ReleaseState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target
        self.history.append((target, datetime.now(timezone.utc)))

    def succeed(self, references: list[PublishedReference]) -> PublishResult:
        """Mark the release as succeeded."""
        self.transition(ReleaseState.SUCCEEDED)
        self.result = PublishResult(
            service=self.name,
            repository=self.descriptor.image,
            state=ReleaseState.SUCCEEDED,
            references=tuple(references),
        )
        return self.result

    def fail(self, kind: str, message: str, log_path: str | None = None) -> PublishResult:
        """Mark the release as failed from whatever state it is in."""
        stage = self.state
        if not self.state.is_terminal:
            self.transition(ReleaseState.FAILED)
        self.result = PublishResult(
            service=self.name,
            repository=self.descriptor.image,
            state=ReleaseState.FAILED,
            error_kind=kind,
            error_message=message,
            failed_stage=stage,
            log_path=log_path,
        )
        return self.result


@dataclass
class ReleaseReport:
    """Aggregate outcome of one orchestration run.

    Attributes:
        run_id: Identifier of the run.
        revision: Source revision released.
        versioned_tag: Versioned tag pushed for every service.
        results: One result per service, in catalog order.
        started_at: Run start time.
        finished_at: Run finish time.
    """

    run_id: str
    revision: str
    versioned_tag: str
    results: list[PublishResult]
    started_at: datetime
    finished_at: datetime

    @property
    def succeeded(self) -> list[PublishResult]:
        """Results of services that were published."""
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[PublishResult]:
        """Results of services that failed."""
        return [r for r in self.results if not r.succeeded]

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 when every service succeeded."""
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "revision": self.revision,
            "versioned_tag": self.versioned_tag,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total": len(self.results),
                "succeeded": len(self.succeeded),
                "failed": len(self.failed),
            },
        }


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "PublishResult",
    "ReleaseReport",
    "ServiceRelease",
]
