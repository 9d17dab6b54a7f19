from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.config.database import Base
from app.models.background_job import JobType
from app.services.repos.job_ledger import JobAlreadyRunningError, JobLedger


class MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def ledger(session_factory, clock) -> JobLedger:
    return JobLedger(session_factory, stale_after_minutes=60, clock=clock)


def test_claim_then_complete_records_stats(ledger) -> None:
    job_id = ledger.claim_job(JobType.REPOSITORY_SYNC)

    running = ledger.latest_job(JobType.REPOSITORY_SYNC)
    assert running["id"] == job_id
    assert running["status"] == "running"
    assert ledger.is_running("repository_sync")

    ledger.complete_job(job_id, {"mode": "quick", "persisted": 300})

    finished = ledger.latest_job(JobType.REPOSITORY_SYNC)
    assert finished["status"] == "completed"
    assert finished["stats"] == {"mode": "quick", "persisted": 300}
    assert finished["completed_at"] is not None
    assert finished["error_message"] is None
    assert not ledger.is_running(JobType.REPOSITORY_SYNC)


def test_second_claim_of_same_type_is_rejected(ledger) -> None:
    first = ledger.claim_job(JobType.CONTRIBUTORS)

    with pytest.raises(JobAlreadyRunningError) as excinfo:
        ledger.claim_job(JobType.CONTRIBUTORS)

    assert excinfo.value.running_job_id == first
    assert excinfo.value.job_type == "contributors"


def test_different_job_types_run_concurrently(ledger) -> None:
    contributors = ledger.claim_job(JobType.CONTRIBUTORS)
    activity = ledger.claim_job(JobType.COMMIT_ACTIVITY)

    assert contributors != activity
    assert ledger.is_running(JobType.CONTRIBUTORS)
    assert ledger.is_running(JobType.COMMIT_ACTIVITY)
    assert not ledger.is_running(JobType.REPOSITORY_SYNC)


def test_failed_job_releases_the_claim(ledger) -> None:
    job_id = ledger.claim_job(JobType.REPOSITORY_SYNC)
    ledger.fail_job(job_id, "Bad credentials", {"pages": 2})

    failed = ledger.latest_job(JobType.REPOSITORY_SYNC)
    assert failed["status"] == "failed"
    assert failed["error_message"] == "Bad credentials"
    assert failed["stats"] == {"pages": 2}

    assert ledger.claim_job(JobType.REPOSITORY_SYNC) != job_id


def test_stale_running_job_is_expired_on_next_claim(ledger, clock) -> None:
    stuck = ledger.claim_job(JobType.COMMIT_ACTIVITY)
    clock.advance(minutes=61)

    assert not ledger.is_running(JobType.COMMIT_ACTIVITY)

    fresh = ledger.claim_job(JobType.COMMIT_ACTIVITY)

    assert fresh != stuck
    latest = ledger.latest_job(JobType.COMMIT_ACTIVITY)
    assert latest["id"] == fresh
    assert latest["status"] == "running"


def test_latest_job_is_none_before_any_run(ledger) -> None:
    assert ledger.latest_job(JobType.CONTRIBUTORS) is None
    assert not ledger.is_running(JobType.CONTRIBUTORS)


def test_unknown_job_type_is_rejected(ledger) -> None:
    with pytest.raises(ValueError):
        ledger.claim_job("star_history")


@pytest.fixture
def enforcing_session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger-fk.db'}", future=True)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def test_unknown_repository_is_not_reported_as_already_running(enforcing_session_factory, clock) -> None:
    ledger = JobLedger(enforcing_session_factory, stale_after_minutes=60, clock=clock)

    with pytest.raises(IntegrityError):
        ledger.claim_job(JobType.CONTRIBUTORS, repository_id=99999)

    assert ledger.latest_job(JobType.CONTRIBUTORS) is None
    assert ledger.claim_job(JobType.CONTRIBUTORS) > 0
