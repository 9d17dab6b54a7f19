"""Weekly commit-activity refresh."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from app.crawlers.repos.client import sanitize_log_extra
from app.crawlers.repos.contracts import FetchState, RepositoryRef
from app.crawlers.repos.persistence import RepositoryPersistence
from app.crawlers.repos.retry import BackoffPolicy, SleepFn, fetch_with_backoff
from app.services.repos.repo_mapper import map_commit_activity_rows

logger = logging.getLogger(__name__)

OUTCOME_STORED = "stored"
OUTCOME_COMPUTING = "computing"
OUTCOME_EMPTY = "empty"
OUTCOME_FAILED = "failed"


@dataclass(slots=True)
class CommitActivityRefreshResult:
    repository_id: int
    full_name: str
    outcome: str
    weeks: int = 0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome == OUTCOME_FAILED


class CommitActivityStage:
    """Replace a repository's weekly commit series with the latest aggregate."""

    def __init__(
        self,
        github_client: Any,
        *,
        persistence: Optional[RepositoryPersistence] = None,
        backoff_policy: Optional[BackoffPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._github_client = github_client
        self._persistence = persistence or RepositoryPersistence()
        self._backoff_policy = backoff_policy or BackoffPolicy.from_settings()
        self._sleep = sleep
        self._clock = clock

    async def refresh_repository(self, db: Any, repository: RepositoryRef) -> CommitActivityRefreshResult:
        owner, repo = repository.full_name.split("/", 1)
        response = await fetch_with_backoff(
            lambda: self._github_client.get_commit_activity(owner.strip(), repo.strip()),
            unit=f"commit activity {repository.full_name}",
            policy=self._backoff_policy,
            sleep=self._sleep,
        )

        if response.state == FetchState.COMPUTING:
            # GitHub builds the aggregate in the background; a later run picks it up.
            logger.info(
                "Commit activity still being computed upstream, skipping",
                extra=sanitize_log_extra(repository=repository.full_name),
            )
            return CommitActivityRefreshResult(repository.id, repository.full_name, OUTCOME_COMPUTING)

        if response.state in (FetchState.EMPTY, FetchState.NOT_FOUND):
            return CommitActivityRefreshResult(repository.id, repository.full_name, OUTCOME_EMPTY)

        if not response.is_ok:
            error = response.error or response.state.value
            logger.warning(
                "Commit activity fetch failed",
                extra=sanitize_log_extra(repository=repository.full_name, state=response.state.value, error=error),
            )
            return CommitActivityRefreshResult(repository.id, repository.full_name, OUTCOME_FAILED, error=error)

        rows = map_commit_activity_rows(response.data if isinstance(response.data, list) else [])
        if not rows:
            return CommitActivityRefreshResult(repository.id, repository.full_name, OUTCOME_EMPTY)

        weeks = self._persistence.replace_commit_activity(db, repository.id, rows, now=self._clock())
        return CommitActivityRefreshResult(repository.id, repository.full_name, OUTCOME_STORED, weeks=weeks)
