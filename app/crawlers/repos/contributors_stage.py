"""Contributor refresh with a commit-history fallback for oversized repositories."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from app.config.settings import settings
from app.crawlers.repos.client import sanitize_log_extra
from app.crawlers.repos.contracts import FetchState, RepositoryRef
from app.crawlers.repos.persistence import RepositoryPersistence
from app.crawlers.repos.retry import BackoffPolicy, SleepFn, fetch_with_backoff
from app.models.repository_stats import ContributorsDataType
from app.services.repos.repo_mapper import map_rest_contributors

logger = logging.getLogger(__name__)

OUTCOME_ALL_TIME = "all_time"
OUTCOME_RECENT = "recent"
OUTCOME_EMPTY = "empty"
OUTCOME_FAILED = "failed"


@dataclass(slots=True)
class ContributorsRefreshResult:
    """What happened to one repository's contributor set."""

    repository_id: int
    full_name: str
    outcome: str
    stored: int = 0
    fallback_pages: int = 0
    data_type: Optional[ContributorsDataType] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome == OUTCOME_FAILED


@dataclass(slots=True)
class _AuthorTally:
    github_id: int
    login: str
    avatar_url: Optional[str]
    html_url: Optional[str]
    contributions: int = 0


@dataclass(slots=True)
class _FallbackWalk:
    pages: int = 0
    tallies: dict[int, _AuthorTally] = field(default_factory=dict)


class ContributorsStage:
    """Refresh the top contributors of one repository.

    The REST contributors endpoint is the primary source and yields the
    all-time top list. When GitHub refuses it because the history is too
    large, the default branch history is walked for a bounded number of pages
    and authors are tallied instead; that set is stored as `recent`.
    """

    def __init__(
        self,
        github_client: Any,
        *,
        persistence: Optional[RepositoryPersistence] = None,
        limit: Optional[int] = None,
        fallback_page_size: Optional[int] = None,
        fallback_max_pages: Optional[int] = None,
        backoff_policy: Optional[BackoffPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._github_client = github_client
        self._persistence = persistence or RepositoryPersistence()
        self._limit = limit or settings.CONTRIBUTORS_LIMIT
        self._fallback_page_size = fallback_page_size or settings.CONTRIBUTORS_FALLBACK_PAGE_SIZE
        self._fallback_max_pages = fallback_max_pages or settings.CONTRIBUTORS_FALLBACK_MAX_PAGES
        self._backoff_policy = backoff_policy or BackoffPolicy.from_settings()
        self._sleep = sleep
        self._clock = clock

    async def refresh_repository(self, db: Any, repository: RepositoryRef) -> ContributorsRefreshResult:
        """Fetch and persist contributors; the caller commits or rolls back."""

        owner, repo = self._split_repo(repository.full_name)
        primary = await fetch_with_backoff(
            lambda: self._github_client.list_contributors(owner, repo, per_page=self._limit),
            unit=f"contributors {repository.full_name}",
            policy=self._backoff_policy,
            sleep=self._sleep,
        )

        # An empty primary answer is authoritative and replaces whatever was stored.
        if primary.state in (FetchState.OK, FetchState.EMPTY):
            rows = map_rest_contributors(primary.data or [], limit=self._limit)
            return self._store(db, repository, rows, ContributorsDataType.ALL_TIME)

        if primary.state == FetchState.NOT_FOUND:
            return self._empty(repository)

        if primary.state == FetchState.TOO_LARGE:
            logger.info(
                "Contributor list too large, falling back to recent commit history",
                extra=sanitize_log_extra(repository=repository.full_name),
            )
            return await self._refresh_from_history(db, repository, owner, repo)

        error = primary.error or primary.state.value
        logger.warning(
            "Contributor fetch failed",
            extra=sanitize_log_extra(repository=repository.full_name, state=primary.state.value, error=error),
        )
        return ContributorsRefreshResult(
            repository_id=repository.id,
            full_name=repository.full_name,
            outcome=OUTCOME_FAILED,
            error=error,
        )

    async def _refresh_from_history(
        self,
        db: Any,
        repository: RepositoryRef,
        owner: str,
        repo: str,
    ) -> ContributorsRefreshResult:
        walk = _FallbackWalk()
        cursor: Optional[str] = None

        while walk.pages < self._fallback_max_pages:
            page_cursor = cursor
            response = await fetch_with_backoff(
                lambda: self._github_client.list_commit_authors(
                    owner,
                    repo,
                    first=self._fallback_page_size,
                    cursor=page_cursor,
                ),
                unit=f"commit history {repository.full_name} page {walk.pages + 1}",
                policy=self._backoff_policy,
                sleep=self._sleep,
            )
            if response.state in (FetchState.EMPTY, FetchState.NOT_FOUND):
                break
            if not response.is_ok or response.data is None:
                error = response.error or response.state.value
                logger.warning(
                    "Commit history fallback failed",
                    extra=sanitize_log_extra(repository=repository.full_name, page=walk.pages + 1, error=error),
                )
                return ContributorsRefreshResult(
                    repository_id=repository.id,
                    full_name=repository.full_name,
                    outcome=OUTCOME_FAILED,
                    fallback_pages=walk.pages,
                    error=error,
                )

            walk.pages += 1
            self._tally(walk, response.data.authors)
            if not response.data.has_next_page or not response.data.end_cursor:
                break
            cursor = response.data.end_cursor

        if not walk.tallies:
            result = self._empty(repository)
            result.fallback_pages = walk.pages
            return result

        ranked = sorted(walk.tallies.values(), key=lambda tally: (-tally.contributions, tally.login.lower()))
        rows = [
            {
                "github_id": tally.github_id,
                "login": tally.login,
                "avatar_url": tally.avatar_url,
                "html_url": tally.html_url,
                "contributions": tally.contributions,
                "type": "User",
            }
            for tally in ranked[: self._limit]
        ]
        result = self._store(db, repository, rows, ContributorsDataType.RECENT)
        result.fallback_pages = walk.pages
        return result

    @staticmethod
    def _tally(walk: _FallbackWalk, authors: list[dict[str, Any]]) -> None:
        for author in authors:
            github_id = author.get("databaseId")
            login = author.get("login")
            if not isinstance(github_id, int) or not login:
                continue
            tally = walk.tallies.get(github_id)
            if tally is None:
                tally = _AuthorTally(
                    github_id=github_id,
                    login=login,
                    avatar_url=author.get("avatarUrl"),
                    html_url=author.get("url"),
                )
                walk.tallies[github_id] = tally
            tally.contributions += 1

    def _store(
        self,
        db: Any,
        repository: RepositoryRef,
        rows: list[dict[str, Any]],
        data_type: ContributorsDataType,
    ) -> ContributorsRefreshResult:
        stored = self._persistence.replace_contributors(
            db,
            repository.id,
            rows,
            data_type=data_type,
            now=self._clock(),
        )
        return ContributorsRefreshResult(
            repository_id=repository.id,
            full_name=repository.full_name,
            outcome=OUTCOME_ALL_TIME if data_type == ContributorsDataType.ALL_TIME else OUTCOME_RECENT,
            stored=stored,
            data_type=data_type,
        )

    @staticmethod
    def _empty(repository: RepositoryRef) -> ContributorsRefreshResult:
        logger.info(
            "No contributors available, keeping stored set",
            extra=sanitize_log_extra(repository=repository.full_name),
        )
        return ContributorsRefreshResult(
            repository_id=repository.id,
            full_name=repository.full_name,
            outcome=OUTCOME_EMPTY,
        )

    @staticmethod
    def _split_repo(full_name: str) -> tuple[str, str]:
        owner, repo = full_name.split("/", 1)
        return owner.strip(), repo.strip()
