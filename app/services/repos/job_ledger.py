"""Start/complete/fail bookkeeping for triggered jobs, backed by `background_jobs`."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

from dateutil.parser import isoparse
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.config.database import SessionLocal
from app.config.settings import settings
from app.models.background_job import BackgroundJob, JobStatus, JobType

logger = logging.getLogger(__name__)


class JobAlreadyRunningError(Exception):
    """Another non-stale run of the same job type holds the claim."""

    def __init__(self, job_type: str, running_job_id: Optional[int] = None) -> None:
        self.job_type = job_type
        self.running_job_id = running_job_id
        super().__init__(f"{job_type} job is already running (id={running_job_id})")


class JobLedger:
    """Each call runs in its own short session so claims are visible immediately."""

    def __init__(
        self,
        session_factory: Callable[[], Any] = SessionLocal,
        *,
        stale_after_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = timedelta(minutes=stale_after_minutes or settings.JOB_STALE_AFTER_MINUTES)
        self._clock = clock

    def claim_job(self, job_type: JobType | str, *, repository_id: Optional[int] = None) -> int:
        """Insert a `running` row for `job_type` and return its id."""

        job_type_value = _job_type_value(job_type)
        now = self._clock()
        db = self._session_factory()
        try:
            self._expire_stale(db, job_type_value, now)
            running_id = db.execute(
                select(BackgroundJob.id).where(
                    BackgroundJob.job_type == job_type_value,
                    BackgroundJob.status == JobStatus.RUNNING.value,
                )
            ).scalar_one_or_none()
            if running_id is not None:
                db.commit()
                raise JobAlreadyRunningError(job_type_value, running_id)

            job = BackgroundJob(
                job_type=job_type_value,
                repository_id=repository_id,
                status=JobStatus.RUNNING.value,
                started_at=now,
                created_at=now,
                stats={},
            )
            db.add(job)
            db.commit()
            logger.info("Job claimed", extra={"job_type": job_type_value, "job_id": job.id})
            return int(job.id)
        except IntegrityError as exc:
            db.rollback()
            # Only a concurrent claim of the same type means "already running";
            # any other constraint failure (e.g. an unknown repository) propagates.
            running_id = db.execute(
                select(BackgroundJob.id).where(
                    BackgroundJob.job_type == job_type_value,
                    BackgroundJob.status == JobStatus.RUNNING.value,
                )
            ).scalar_one_or_none()
            db.rollback()
            if running_id is None:
                raise
            raise JobAlreadyRunningError(job_type_value, running_id) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def complete_job(self, job_id: int, stats: Optional[dict[str, Any]] = None) -> None:
        self._finish(job_id, status=JobStatus.COMPLETED, stats=stats)

    def fail_job(self, job_id: int, error: str, stats: Optional[dict[str, Any]] = None) -> None:
        self._finish(job_id, status=JobStatus.FAILED, stats=stats, error=error)

    def latest_job(self, job_type: JobType | str) -> Optional[dict[str, Any]]:
        """Most recently started run of `job_type`, serialized for polling."""

        db = self._session_factory()
        try:
            job = db.execute(
                select(BackgroundJob)
                .where(BackgroundJob.job_type == _job_type_value(job_type))
                .order_by(BackgroundJob.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return serialize_job(job) if job is not None else None
        finally:
            db.close()

    def is_running(self, job_type: JobType | str) -> bool:
        latest = self.latest_job(job_type)
        if latest is None or latest["status"] != JobStatus.RUNNING.value:
            return False
        started_at = _parse_iso(latest.get("started_at"))
        return started_at is None or self._clock() - started_at < self._stale_after

    def _finish(
        self,
        job_id: int,
        *,
        status: JobStatus,
        stats: Optional[dict[str, Any]],
        error: Optional[str] = None,
    ) -> None:
        db = self._session_factory()
        try:
            db.execute(
                update(BackgroundJob)
                .where(BackgroundJob.id == job_id)
                .values(
                    status=status.value,
                    completed_at=self._clock(),
                    error_message=error,
                    stats=stats or {},
                )
            )
            db.commit()
            logger.info("Job finished", extra={"job_id": job_id, "status": status.value, "error": error})
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _expire_stale(self, db: Any, job_type: str, now: datetime) -> None:
        cutoff = now - self._stale_after
        expired = db.execute(
            update(BackgroundJob)
            .where(
                BackgroundJob.job_type == job_type,
                BackgroundJob.status == JobStatus.RUNNING.value,
                BackgroundJob.started_at < cutoff,
            )
            .values(
                status=JobStatus.FAILED.value,
                completed_at=now,
                error_message=f"stale: still running after {int(self._stale_after.total_seconds() // 60)} minutes",
            )
        )
        if expired.rowcount:
            logger.warning("Expired stale running jobs", extra={"job_type": job_type, "expired": expired.rowcount})
            db.flush()


def serialize_job(job: BackgroundJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "job_type": job.job_type,
        "repository_id": job.repository_id,
        "status": job.status,
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "error_message": job.error_message,
        "stats": job.stats or {},
    }


def _job_type_value(job_type: JobType | str) -> str:
    return job_type.value if isinstance(job_type, JobType) else JobType(job_type).value


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return isoparse(value)
