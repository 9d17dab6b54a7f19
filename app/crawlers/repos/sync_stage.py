"""Cursor-driven batch sync of the top repositories by stars."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from app.config.settings import settings
from app.crawlers.repos.client import sanitize_log_extra
from app.crawlers.repos.contracts import FetchResult, FetchState, GitHubFatalError, RetriesExhaustedError
from app.crawlers.repos.persistence import RepositoryPersistence
from app.crawlers.repos.retry import BackoffPolicy, SleepFn, fetch_with_backoff

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 20


class SyncState(str, enum.Enum):
    PAGING = "paging"
    BATCH_FETCHED = "batch_fetched"
    PERSISTED = "persisted"
    BACKOFF = "backoff"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(slots=True)
class SyncRunResult:
    """Progress of one sync run; also attached to `SyncAbortedError`."""

    mode: str
    target: int
    state: SyncState = SyncState.PAGING
    pages: int = 0
    fetched: int = 0
    persisted: int = 0
    skipped: int = 0
    languages: int = 0
    backoffs: int = 0
    end_cursor: Optional[str] = None
    error: Optional[str] = None

    def as_stats(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "target": self.target,
            "state": self.state.value,
            "pages": self.pages,
            "fetched": self.fetched,
            "persisted": self.persisted,
            "skipped": self.skipped,
            "languages": self.languages,
            "backoffs": self.backoffs,
        }


class SyncAbortedError(Exception):
    """The sync stopped on a fatal condition; already committed pages stay."""

    def __init__(self, message: str, result: SyncRunResult) -> None:
        super().__init__(message)
        self.result = result


class TopRepositoriesSync:
    """Pages through upstream search results and commits one transaction per batch.

    A page that comes back rate-limited or transient is retried on the same
    cursor with capped exponential backoff. Any other failure aborts the run.
    """

    def __init__(
        self,
        github_client: Any,
        *,
        persistence: Optional[RepositoryPersistence] = None,
        batch_size: Optional[int] = None,
        page_delay_seconds: Optional[float] = None,
        backoff_policy: Optional[BackoffPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._github_client = github_client
        self._persistence = persistence or RepositoryPersistence()
        self._batch_size = max(1, min(batch_size or settings.SYNC_BATCH_SIZE, MAX_BATCH_SIZE))
        self._page_delay_seconds = (
            settings.SYNC_PAGE_DELAY_SECONDS if page_delay_seconds is None else page_delay_seconds
        )
        self._backoff_policy = backoff_policy or BackoffPolicy.from_settings()
        self._sleep = sleep
        self._clock = clock

    async def run(self, db: Any, *, target: int, mode: str = "quick") -> SyncRunResult:
        result = SyncRunResult(mode=mode, target=target)
        cursor: Optional[str] = None
        logger.info("Repository sync started", extra=sanitize_log_extra(mode=mode, target=target))

        while result.fetched < target:
            result.state = SyncState.PAGING
            limit = min(self._batch_size, target - result.fetched)
            page_number = result.pages + 1

            response = await self._fetch_page(result, limit=limit, cursor=cursor, page_number=page_number)
            if response.state == FetchState.EMPTY:
                break
            if not response.is_ok or response.data is None:
                raise self._abort(result, f"search page {page_number} failed ({response.state.value}): {response.error}")

            page = response.data
            result.state = SyncState.BATCH_FETCHED
            result.pages += 1
            result.fetched += len(page.nodes)

            try:
                batch_stats = self._persistence.persist_search_batch(db, page.nodes, now=self._clock())
                db.commit()
            except Exception as exc:
                db.rollback()
                logger.exception(
                    "Repository batch persistence failed",
                    extra=sanitize_log_extra(mode=mode, page=page_number, error=str(exc)),
                )
                raise self._abort(result, f"search page {page_number} could not be persisted: {exc}") from exc

            result.state = SyncState.PERSISTED
            result.persisted += batch_stats["persisted"]
            result.skipped += batch_stats["skipped"]
            result.languages += batch_stats["languages"]
            result.end_cursor = page.end_cursor
            logger.info(
                "Repository batch persisted",
                extra=sanitize_log_extra(mode=mode, page=page_number, persisted=batch_stats["persisted"], total=result.fetched),
            )

            if len(page.nodes) < limit or not page.has_next_page or not page.end_cursor:
                break
            if result.fetched >= target:
                break

            cursor = page.end_cursor
            if self._page_delay_seconds > 0:
                await self._sleep(self._page_delay_seconds)

        result.state = SyncState.DONE
        logger.info("Repository sync completed", extra=sanitize_log_extra(**result.as_stats()))
        return result

    async def _fetch_page(
        self,
        result: SyncRunResult,
        *,
        limit: int,
        cursor: Optional[str],
        page_number: int,
    ) -> FetchResult[Any]:
        def _on_backoff(_: FetchResult[Any], __: float) -> None:
            result.state = SyncState.BACKOFF
            result.backoffs += 1

        try:
            return await fetch_with_backoff(
                lambda: self._github_client.search_top_repositories(limit=limit, cursor=cursor),
                unit=f"search page {page_number}",
                policy=self._backoff_policy,
                sleep=self._sleep,
                on_backoff=_on_backoff,
            )
        except (GitHubFatalError, RetriesExhaustedError) as exc:
            raise self._abort(result, str(exc)) from exc

    @staticmethod
    def _abort(result: SyncRunResult, message: str) -> SyncAbortedError:
        result.state = SyncState.ABORTED
        result.error = message
        logger.error("Repository sync aborted", extra=sanitize_log_extra(mode=result.mode, error=message))
        return SyncAbortedError(message, result)
