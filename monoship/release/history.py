"""Release history persistence.

Stores release reports as ReleaseRecord rows and queries them back.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from monoship.release.models import ReleaseReport
from monoship.release.records import ReleaseRecord
from monoship.types import ReleaseState

logger = logging.getLogger(__name__)


def record_report(session: Session, report: ReleaseReport) -> list[ReleaseRecord]:
    """Persist one ReleaseRecord per service of a report.

    Args:
        session: Database session.
        report: Finished release report.

    Returns:
        Created records, in report order.
    """
    records = []
    for result in report.results:
        record = ReleaseRecord(
            run_id=report.run_id,
            service=result.service,
            repository=result.repository,
            status=result.state.value,
            revision=report.revision,
            versioned_tag=report.versioned_tag,
            references=[r.reference for r in result.references],
            error_type=result.error_kind,
            error_message=result.error_message,
            failed_stage=result.failed_stage.value if result.failed_stage else None,
            log_path=result.log_path,
            started_at=report.started_at,
            finished_at=report.finished_at,
        )
        session.add(record)
        records.append(record)
    session.flush()
    logger.info("Recorded %d release record(s) for run %s", len(records), report.run_id)
    return records


def list_releases(
    session: Session,
    service: str | None = None,
    status: ReleaseState | None = None,
    run_id: str | None = None,
    limit: int = 100,
) -> list[ReleaseRecord]:
    """List release records, newest first.

    Args:
        session: Database session.
        service: Filter by service name.
        status: Filter by terminal state.
        run_id: Filter by run.
        limit: Maximum results to return.

    Returns:
        List of ReleaseRecord instances.
    """
    stmt = select(ReleaseRecord)

    if service is not None:
        stmt = stmt.where(ReleaseRecord.service == service)
    if status is not None:
        stmt = stmt.where(ReleaseRecord.status == status.value)
    if run_id is not None:
        stmt = stmt.where(ReleaseRecord.run_id == run_id)

    stmt = stmt.order_by(ReleaseRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def last_successful_release(session: Session, service: str) -> ReleaseRecord | None:
    """Return the most recent successful release of a service, or None."""
    stmt = (
        select(ReleaseRecord)
        .where(
            ReleaseRecord.service == service,
            ReleaseRecord.status == ReleaseState.SUCCEEDED.value,
        )
        .order_by(ReleaseRecord.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


__all__ = ["last_successful_release", "list_releases", "record_report"]
