"""Tests for release/history.py module.

Tests persistence of release reports using in-memory SQLite.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from monoship.db import Base, open_history, session_scope
from monoship.publish import PublishedReference
from monoship.release.history import last_successful_release, list_releases, record_report
from monoship.release.models import PublishResult, ReleaseReport
from monoship.release.records import ReleaseRecord
from monoship.types import ReleaseState


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    yield session
    session.close()


def make_report(run_id: str, revision: str, *results: PublishResult) -> ReleaseReport:
    started = datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc)
    return ReleaseReport(
        run_id=run_id,
        revision=revision,
        versioned_tag=f"{revision[:7]}-20250102",
        results=list(results),
        started_at=started,
        finished_at=started + timedelta(minutes=3),
    )


def succeeded(service: str, tag: str) -> PublishResult:
    return PublishResult(
        service=service,
        repository=f"team/{service}",
        state=ReleaseState.SUCCEEDED,
        references=(
            PublishedReference(f"r.example.com/team/{service}:{tag}", tag),
            PublishedReference(f"r.example.com/team/{service}:latest", "latest"),
        ),
    )


def failed(service: str) -> PublishResult:
    return PublishResult(
        service=service,
        repository=f"team/{service}",
        state=ReleaseState.FAILED,
        error_kind="build_failed",
        error_message="compile error",
        failed_stage=ReleaseState.BUILDING,
        log_path="/work/scratch/export-1/build.log",
    )


class TestRecordReport:
    """Tests for record_report function."""

    def test_one_row_per_service(self, session) -> None:
        report = make_report(
            "run-1", "0123456789", succeeded("api", "0123456-20250102"), failed("web")
        )
        records = record_report(session, report)
        session.commit()

        assert [r.service for r in records] == ["api", "web"]
        assert all(r.id is not None for r in records)
        api, web = records
        assert api.is_succeeded()
        assert api.references == [
            "r.example.com/team/api:0123456-20250102",
            "r.example.com/team/api:latest",
        ]
        assert api.versioned_tag == "0123456-20250102"
        assert not web.is_succeeded()
        assert web.error_type == "build_failed"
        assert web.failed_stage == "building"
        assert web.log_path == "/work/scratch/export-1/build.log"
        assert web.references == []

    def test_repr(self, session) -> None:
        record = record_report(session, make_report("run-1", "abc", failed("web")))[0]
        assert "run-1" in repr(record)
        assert "failed" in repr(record)


class TestListReleases:
    """Tests for list_releases function."""

    @pytest.fixture
    def history(self, session):
        record_report(
            session,
            make_report("run-1", "1111111aaa", succeeded("api", "1111111-20250102"), failed("web")),
        )
        record_report(
            session,
            make_report("run-2", "2222222bbb", succeeded("api", "2222222-20250102"),
                        succeeded("web", "2222222-20250102")),
        )
        session.commit()
        return session

    def test_newest_first(self, history) -> None:
        records = list_releases(history)
        assert len(records) == 4
        assert [r.run_id for r in records] == ["run-2", "run-2", "run-1", "run-1"]

    def test_filter_service(self, history) -> None:
        records = list_releases(history, service="web")
        assert [r.status for r in records] == ["succeeded", "failed"]

    def test_filter_status(self, history) -> None:
        records = list_releases(history, status=ReleaseState.FAILED)
        assert [(r.run_id, r.service) for r in records] == [("run-1", "web")]

    def test_filter_run(self, history) -> None:
        assert len(list_releases(history, run_id="run-1")) == 2

    def test_limit(self, history) -> None:
        assert len(list_releases(history, limit=1)) == 1

    def test_empty(self, session) -> None:
        assert list_releases(session) == []


class TestLastSuccessfulRelease:
    """Tests for last_successful_release function."""

    def test_skips_failures(self, session) -> None:
        record_report(session, make_report("run-1", "1111111aaa", succeeded("web", "t1")))
        record_report(session, make_report("run-2", "2222222bbb", failed("web")))
        session.commit()

        record = last_successful_release(session, "web")
        assert isinstance(record, ReleaseRecord)
        assert record.run_id == "run-1"
        assert record.revision == "1111111aaa"

    def test_none(self, session) -> None:
        record_report(session, make_report("run-1", "abc", failed("web")))
        session.commit()
        assert last_successful_release(session, "web") is None
        assert last_successful_release(session, "api") is None


class TestHistoryDatabase:
    """Tests for the db.py helpers used by the CLI."""

    def test_open_history_creates_file_and_tables(self, tmp_path) -> None:
        db_file = tmp_path / "nested" / "history.db"
        factory = open_history(f"sqlite:///{db_file}")
        assert db_file.parent.is_dir()
        with session_scope(factory) as session:
            record_report(session, make_report("run-1", "abc", failed("web")))
        with factory() as session:
            assert len(list_releases(session)) == 1

    def test_session_scope_rolls_back(self) -> None:
        factory = open_history("sqlite:///:memory:")
        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                record_report(session, make_report("run-1", "abc", failed("web")))
                raise RuntimeError("abort")
        with factory() as session:
            assert list_releases(session) == []
