"""Release history ORM models.

A ReleaseRecord stores the outcome of one service in one orchestration
run, so operators can see which revision of each service was pushed and
why a release failed.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from monoship.db import Base
from monoship.types import ReleaseState


class ReleaseRecord(Base):
    """ORM model for per-service release outcomes.

    Attributes:
        id: Primary key.
        run_id: Orchestration run identifier.
        service: Service name.
        repository: Target image repository.
        status: Terminal release state (succeeded, failed).
        revision: Source revision released.
        versioned_tag: Versioned tag of the run.
        references: JSON array of pushed references.
        error_type: Error code if the release failed.
        error_message: Error detail if the release failed.
        failed_stage: State the release failed in.
        log_path: Log file with captured output.
        started_at: Run start time.
        finished_at: Run finish time.
        recorded_at: Row creation time.
    """

    __tablename__ = "release_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReleaseState.PENDING.value, index=True
    )
    revision: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    versioned_tag: Mapped[str] = mapped_column(String(128), nullable=False)
    references: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=list
    )

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    failed_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("ix_release_records_service_status", "service", "status"),)

    def __repr__(self) -> str:
        """Return string representation of ReleaseRecord."""
        return (
            f"<ReleaseRecord(id={self.id}, run_id='{self.run_id}', "
            f"service='{self.service}', status='{self.status}')>"
        )

    def is_succeeded(self) -> bool:
        """Check if this release succeeded."""
        return self.status == ReleaseState.SUCCEEDED.value


__all__ = ["ReleaseRecord"]
