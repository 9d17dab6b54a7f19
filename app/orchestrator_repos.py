"""Top-repository orchestrator: sync and enrichment runs with job bookkeeping."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import UTC, datetime
import logging
from typing import Any, Callable, Optional

from sqlalchemy import select

from app.config.database import SessionLocal
from app.config.settings import settings
from app.crawlers.repos.client import GitHubRepoClient, sanitize_for_log, sanitize_log_extra
from app.crawlers.repos.commit_activity_stage import CommitActivityStage
from app.crawlers.repos.contracts import GitHubFatalError, RepositoryRef
from app.crawlers.repos.contributors_stage import ContributorsStage
from app.crawlers.repos.retry import SleepFn
from app.crawlers.repos.sync_stage import SyncAbortedError, TopRepositoriesSync
from app.models.background_job import JobType
from app.models.repository import Repository
from app.services.repos.job_ledger import JobAlreadyRunningError, JobLedger
from app.services.repos.leaderboard import RepositoryLeaderboard

logger = logging.getLogger(__name__)

MODE_QUICK = "quick"
MODE_COMPREHENSIVE = "comprehensive"


class RepoCrawlerOrchestrator:
    """Runs the repository sync and the two enrichment refreshes.

    Every run claims a `background_jobs` row first, so overlapping triggers
    of the same job type are rejected, and records its stats on completion.
    Callers that already claimed a job (the HTTP layer, to answer 409
    synchronously) pass its id in.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any] = SessionLocal,
        github_client_factory: Callable[[], Any] = GitHubRepoClient,
        sync_stage_factory: Optional[Callable[[Any], Any]] = None,
        contributors_stage_factory: Optional[Callable[[Any], Any]] = None,
        commit_activity_stage_factory: Optional[Callable[[Any], Any]] = None,
        job_ledger: Optional[JobLedger] = None,
        sleep: SleepFn = asyncio.sleep,
        enrichment_delay_seconds: Optional[float] = None,
        enrichment_batch_limit: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._github_client_factory = github_client_factory
        self._sync_stage_factory = sync_stage_factory or (lambda client: TopRepositoriesSync(client, sleep=sleep))
        self._contributors_stage_factory = contributors_stage_factory or (
            lambda client: ContributorsStage(client, sleep=sleep)
        )
        self._commit_activity_stage_factory = commit_activity_stage_factory or (
            lambda client: CommitActivityStage(client, sleep=sleep)
        )
        self._ledger = job_ledger or JobLedger(session_factory)
        self._sleep = sleep
        self._enrichment_delay_seconds = (
            settings.ENRICHMENT_DELAY_SECONDS if enrichment_delay_seconds is None else enrichment_delay_seconds
        )
        self._enrichment_batch_limit = enrichment_batch_limit or settings.ENRICHMENT_BATCH_LIMIT

    @property
    def ledger(self) -> JobLedger:
        return self._ledger

    def claim_job(self, job_type: JobType | str, *, repository_id: Optional[int] = None) -> int:
        """Claim a job ahead of scheduling it; raises `JobAlreadyRunningError`."""
        return self._ledger.claim_job(job_type, repository_id=repository_id)

    async def run_quick_sync(self, *, job_id: Optional[int] = None) -> dict[str, Any]:
        return await self._run_sync(mode=MODE_QUICK, target=settings.SYNC_QUICK_TARGET, job_id=job_id)

    async def run_comprehensive_sync(self, *, job_id: Optional[int] = None) -> dict[str, Any]:
        return await self._run_sync(mode=MODE_COMPREHENSIVE, target=settings.SYNC_COMPREHENSIVE_TARGET, job_id=job_id)

    async def run_contributors_refresh(
        self,
        *,
        repository_id: Optional[int] = None,
        job_id: Optional[int] = None,
    ) -> dict[str, Any]:
        return await self._run_enrichment(
            job_type=JobType.CONTRIBUTORS,
            stage_factory=self._contributors_stage_factory,
            repository_id=repository_id,
            job_id=job_id,
        )

    async def run_commit_activity_refresh(
        self,
        *,
        repository_id: Optional[int] = None,
        job_id: Optional[int] = None,
    ) -> dict[str, Any]:
        return await self._run_enrichment(
            job_type=JobType.COMMIT_ACTIVITY,
            stage_factory=self._commit_activity_stage_factory,
            repository_id=repository_id,
            job_id=job_id,
        )

    async def run_all_enrichment(self) -> dict[str, Any]:
        """Contributors first, then commit activity; each claims its own job."""

        started_at = datetime.now(UTC).isoformat()
        contributors = await self.run_contributors_refresh()
        commit_activity = await self.run_commit_activity_refresh()
        return {
            "success": bool(contributors.get("success")) and bool(commit_activity.get("success")),
            "started_at": started_at,
            "completed_at": datetime.now(UTC).isoformat(),
            "contributors": contributors,
            "commit_activity": commit_activity,
        }

    async def _run_sync(self, *, mode: str, target: int, job_id: Optional[int]) -> dict[str, Any]:
        claimed = self._claim_or_report(JobType.REPOSITORY_SYNC, job_id=job_id)
        if isinstance(claimed, dict):
            return claimed
        job_id = claimed

        db = self._session_factory()
        stats: dict[str, Any] = {"mode": mode, "target": target}
        try:
            async with self._github_client_factory() as client:
                stage = self._sync_stage_factory(client)
                result = await stage.run(db, target=target, mode=mode)
            stats = result.as_stats()
            self._ledger.complete_job(job_id, stats)
            return {"success": True, "job_id": job_id, "stats": stats}
        except SyncAbortedError as exc:
            error = sanitize_for_log(str(exc), key="error")
            stats = exc.result.as_stats()
            self._ledger.fail_job(job_id, error, stats)
            return {"success": False, "job_id": job_id, "error": error, "stats": stats}
        except Exception as exc:
            db.rollback()
            error = sanitize_for_log(str(exc), key="error")
            logger.exception("Repository sync raised exception", extra=sanitize_log_extra(mode=mode, error=error))
            self._ledger.fail_job(job_id, error, stats)
            return {"success": False, "job_id": job_id, "error": error, "stats": stats}
        finally:
            db.close()

    async def _run_enrichment(
        self,
        *,
        job_type: JobType,
        stage_factory: Callable[[Any], Any],
        repository_id: Optional[int],
        job_id: Optional[int],
    ) -> dict[str, Any]:
        if job_id is None and repository_id is not None and not self._repository_exists(repository_id):
            error = f"Repository {repository_id} not found"
            logger.warning(
                "Enrichment trigger for unknown repository",
                extra=sanitize_log_extra(job_type=job_type.value, repository_id=repository_id),
            )
            return {"success": False, "skipped": True, "error": error, "stats": {}}

        claimed = self._claim_or_report(job_type, job_id=job_id, repository_id=repository_id)
        if isinstance(claimed, dict):
            return claimed
        job_id = claimed

        db = self._session_factory()
        stats: dict[str, Any] = {
            "repositories": 0,
            "processed": 0,
            "failed": 0,
            "outcomes": {},
            "failures": [],
        }
        try:
            repositories = self._load_repositories(db, repository_id=repository_id)
            stats["repositories"] = len(repositories)
            if not repositories:
                stats["reason"] = "No repositories found"
                self._ledger.complete_job(job_id, stats)
                return {"success": True, "skipped": True, "job_id": job_id, "stats": stats}

            outcomes: Counter[str] = Counter()
            async with self._github_client_factory() as client:
                stage = stage_factory(client)
                for index, repository in enumerate(repositories):
                    if index > 0 and self._enrichment_delay_seconds > 0:
                        await self._sleep(self._enrichment_delay_seconds)
                    logger.debug(
                        "Refreshing repository",
                        extra=sanitize_log_extra(job_type=job_type.value, repository=repository.full_name),
                    )
                    try:
                        result = await stage.refresh_repository(db, repository)
                    except GitHubFatalError:
                        db.rollback()
                        raise
                    except Exception as exc:
                        db.rollback()
                        self._record_failure(stats, job_type, repository, str(exc))
                        continue

                    if result.failed:
                        db.rollback()
                        self._record_failure(stats, job_type, repository, result.error or "failed")
                        continue

                    try:
                        db.commit()
                    except Exception as exc:
                        db.rollback()
                        self._record_failure(stats, job_type, repository, str(exc))
                        continue
                    stats["processed"] += 1
                    outcomes[result.outcome] += 1

            stats["outcomes"] = dict(outcomes)
            self._ledger.complete_job(job_id, stats)
            logger.info(
                "Enrichment run completed",
                extra=sanitize_log_extra(job_type=job_type.value, processed=stats["processed"], failed=stats["failed"]),
            )
            return {"success": True, "job_id": job_id, "stats": stats}
        except Exception as exc:
            db.rollback()
            error = sanitize_for_log(str(exc), key="error")
            logger.exception(
                "Enrichment run raised exception",
                extra=sanitize_log_extra(job_type=job_type.value, error=error),
            )
            self._ledger.fail_job(job_id, error, stats)
            return {"success": False, "job_id": job_id, "error": error, "stats": stats}
        finally:
            db.close()

    def _claim_or_report(
        self,
        job_type: JobType,
        *,
        job_id: Optional[int],
        repository_id: Optional[int] = None,
    ) -> int | dict[str, Any]:
        if job_id is not None:
            return job_id
        try:
            return self._ledger.claim_job(job_type, repository_id=repository_id)
        except JobAlreadyRunningError as exc:
            logger.warning("Job already running, skipping trigger", extra=sanitize_log_extra(job_type=job_type.value))
            return {
                "success": False,
                "skipped": True,
                "error": str(exc),
                "running_job_id": exc.running_job_id,
                "stats": {},
            }

    def _repository_exists(self, repository_id: int) -> bool:
        db = self._session_factory()
        try:
            return RepositoryLeaderboard(db).exists(repository_id)
        finally:
            db.close()

    def _load_repositories(self, db: Any, *, repository_id: Optional[int]) -> list[RepositoryRef]:
        statement = select(Repository.id, Repository.full_name).order_by(Repository.id)
        if repository_id is not None:
            statement = statement.where(Repository.id == repository_id)
        else:
            statement = statement.limit(self._enrichment_batch_limit)
        repositories = [RepositoryRef(id=int(row.id), full_name=row.full_name) for row in db.execute(statement)]
        # No read transaction may stay open across upstream calls and pacing sleeps.
        db.rollback()
        return repositories

    @staticmethod
    def _record_failure(stats: dict[str, Any], job_type: JobType, repository: RepositoryRef, error: str) -> None:
        sanitized = sanitize_for_log(error, key="error")
        stats["failed"] += 1
        stats["failures"].append({"repository": repository.full_name, "error": sanitized})
        logger.warning(
            "Enrichment failed for repository",
            extra=sanitize_log_extra(job_type=job_type.value, repository=repository.full_name, error=sanitized),
        )
