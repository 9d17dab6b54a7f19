from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Optional

import pytest
from sqlalchemy import func, select

from app.crawlers.repos.contracts import FetchResult, FetchState, GitHubAuthError, SearchPage
from app.crawlers.repos.retry import BackoffPolicy
from app.crawlers.repos.sync_stage import SyncAbortedError, SyncState, TopRepositoriesSync
from app.models.repository import Repository
from app.models.repository_stats import RepositoryStats

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeSearchClient:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def search_top_repositories(self, *, limit: int, cursor: Optional[str] = None, query=None):
        self.calls.append({"limit": limit, "cursor": cursor})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _page(nodes, *, cursor: Optional[str], has_next: bool) -> FetchResult:
    return FetchResult(state=FetchState.OK, data=SearchPage(nodes=nodes, end_cursor=cursor, has_next_page=has_next))


def _nodes(make_node, start: int, count: int) -> list[dict[str, Any]]:
    return [make_node(index, f"acme/repo-{index}", stars=10_000 - index) for index in range(start, start + count)]


def _stage(client, sleep, **kwargs) -> TopRepositoriesSync:
    return TopRepositoriesSync(
        client,
        sleep=sleep,
        clock=lambda: NOW,
        page_delay_seconds=kwargs.pop("page_delay_seconds", 1.0),
        backoff_policy=kwargs.pop("backoff_policy", BackoffPolicy(max_attempts=4)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sync_pages_until_target_and_commits_each_batch(db, make_node) -> None:
    client = FakeSearchClient(
        [
            _page(_nodes(make_node, 1, 20), cursor="c1", has_next=True),
            _page(_nodes(make_node, 21, 20), cursor="c2", has_next=True),
            _page(_nodes(make_node, 41, 10), cursor="c3", has_next=True),
        ]
    )
    sleep = SleepRecorder()

    result = await _stage(client, sleep).run(db, target=50, mode="quick")

    assert result.state == SyncState.DONE
    assert result.pages == 3
    assert result.persisted == 50
    assert [call["cursor"] for call in client.calls] == [None, "c1", "c2"]
    assert [call["limit"] for call in client.calls] == [20, 20, 10]
    assert sleep.calls == [1.0, 1.0]
    assert db.execute(select(func.count(Repository.id))).scalar_one() == 50
    assert db.execute(select(func.count(RepositoryStats.id))).scalar_one() == 50


@pytest.mark.asyncio
async def test_sync_stops_on_short_page_or_missing_next_page(db, make_node) -> None:
    client = FakeSearchClient(
        [
            _page(_nodes(make_node, 1, 20), cursor="c1", has_next=True),
            _page(_nodes(make_node, 21, 7), cursor="c2", has_next=True),
        ]
    )

    result = await _stage(client, SleepRecorder()).run(db, target=300)

    assert result.fetched == 27
    assert len(client.calls) == 2

    single = FakeSearchClient([_page(_nodes(make_node, 100, 20), cursor="c9", has_next=False)])
    result = await _stage(single, SleepRecorder()).run(db, target=300)
    assert result.pages == 1
    assert len(single.calls) == 1


@pytest.mark.asyncio
async def test_batch_size_never_exceeds_twenty(db, make_node) -> None:
    client = FakeSearchClient([_page(_nodes(make_node, 1, 5), cursor=None, has_next=False)])

    await _stage(client, SleepRecorder(), batch_size=100).run(db, target=300)

    assert client.calls[0]["limit"] == 20


@pytest.mark.asyncio
async def test_rate_limited_page_is_retried_on_same_cursor(db, make_node) -> None:
    client = FakeSearchClient(
        [
            _page(_nodes(make_node, 1, 20), cursor="c1", has_next=True),
            FetchResult(state=FetchState.RATE_LIMITED, status_code=403),
            FetchResult(state=FetchState.TRANSIENT, status_code=502),
            _page(_nodes(make_node, 21, 3), cursor="c2", has_next=False),
        ]
    )
    sleep = SleepRecorder()
    policy = BackoffPolicy(rate_limit_base_seconds=60, transient_base_seconds=10, max_attempts=4)

    result = await _stage(client, sleep, backoff_policy=policy).run(db, target=100)

    assert [call["cursor"] for call in client.calls] == [None, "c1", "c1", "c1"]
    assert result.backoffs == 2
    assert result.state == SyncState.DONE
    assert sleep.calls == [1.0, 60, 20]
    assert result.persisted == 23


@pytest.mark.asyncio
async def test_exhausted_retries_abort_but_keep_committed_pages(db, make_node) -> None:
    client = FakeSearchClient(
        [_page(_nodes(make_node, 1, 20), cursor="c1", has_next=True)]
        + [FetchResult(state=FetchState.TRANSIENT, status_code=503) for _ in range(3)]
    )

    with pytest.raises(SyncAbortedError) as excinfo:
        await _stage(client, SleepRecorder(), backoff_policy=BackoffPolicy(max_attempts=3)).run(db, target=100)

    assert excinfo.value.result.state == SyncState.ABORTED
    assert excinfo.value.result.persisted == 20
    assert "gave up after 3 attempts" in str(excinfo.value)
    assert db.execute(select(func.count(Repository.id))).scalar_one() == 20


@pytest.mark.asyncio
async def test_auth_failure_aborts_the_run(db, make_node) -> None:
    client = FakeSearchClient([GitHubAuthError("Bad credentials")])

    with pytest.raises(SyncAbortedError) as excinfo:
        await _stage(client, SleepRecorder()).run(db, target=100)

    assert isinstance(excinfo.value.__cause__, GitHubAuthError)
    assert db.execute(select(func.count(Repository.id))).scalar_one() == 0


@pytest.mark.asyncio
async def test_other_upstream_failures_abort_without_retry(db) -> None:
    client = FakeSearchClient([FetchResult(state=FetchState.FAILED, status_code=422, error="Validation Failed")])
    sleep = SleepRecorder()

    with pytest.raises(SyncAbortedError, match="Validation Failed"):
        await _stage(client, sleep).run(db, target=100)

    assert len(client.calls) == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_empty_first_page_finishes_cleanly(db) -> None:
    client = FakeSearchClient([FetchResult(state=FetchState.EMPTY, data=SearchPage())])

    result = await _stage(client, SleepRecorder()).run(db, target=100)

    assert result.state == SyncState.DONE
    assert result.pages == 0
