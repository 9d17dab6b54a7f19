from __future__ import annotations

from datetime import UTC, datetime, timedelta

from app.services.repos.repo_scorer import RepoScorerService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _snapshot(**overrides):
    snapshot = {
        "stargazerCount": 1000,
        "forkCount": 200,
        "issues": {"totalCount": 10},
        "isArchived": False,
        "isDisabled": False,
        "hasIssuesEnabled": False,
        "hasDiscussionsEnabled": False,
        "releases": {"totalCount": 0, "nodes": []},
    }
    snapshot.update(overrides)
    return snapshot


def test_activity_score_for_recent_popular_repository() -> None:
    # 100*log10(1001) + 50*log10(201) + 200 + 0.5*10
    assert RepoScorerService.calculate_activity_score(_snapshot(), 3) == 620.2


def test_activity_score_recency_tiers() -> None:
    snapshot = _snapshot(issues={"totalCount": 0})

    assert RepoScorerService.calculate_activity_score(snapshot, 7) == 615.2
    assert RepoScorerService.calculate_activity_score(snapshot, 30) == 515.2
    assert RepoScorerService.calculate_activity_score(snapshot, 90) == 465.2
    assert RepoScorerService.calculate_activity_score(snapshot, 200) == 415.2
    assert RepoScorerService.calculate_activity_score(snapshot, None) == 415.2


def test_activity_score_halves_accumulated_score_after_a_year() -> None:
    snapshot = _snapshot(issues={"totalCount": 0})

    within_year = RepoScorerService.calculate_activity_score(snapshot, 365)
    stale = RepoScorerService.calculate_activity_score(snapshot, 366)

    assert within_year == 415.2
    assert stale == 207.6


def test_activity_score_issue_term_is_capped_and_not_halved() -> None:
    snapshot = _snapshot(issues={"totalCount": 5000})

    assert RepoScorerService.calculate_activity_score(snapshot, 200) == 465.2
    # Halving applies before the issue term is added.
    assert RepoScorerService.calculate_activity_score(snapshot, 400) == 257.6


def test_health_score_for_recent_push_without_release() -> None:
    assert RepoScorerService.calculate_health_score(_snapshot(), 3, now=NOW) == 80


def test_health_score_adds_release_issue_and_discussion_bonuses() -> None:
    snapshot = _snapshot(
        hasIssuesEnabled=True,
        hasDiscussionsEnabled=True,
        releases={"totalCount": 3, "nodes": [{"tagName": "v2", "publishedAt": (NOW - timedelta(days=30)).isoformat()}]},
    )

    assert RepoScorerService.calculate_health_score(snapshot, 3, now=NOW) == 100


def test_health_score_ignores_old_releases_and_penalizes_stale_pushes() -> None:
    snapshot = _snapshot(
        releases={"totalCount": 3, "nodes": [{"tagName": "v1", "publishedAt": (NOW - timedelta(days=91)).isoformat()}]},
    )

    assert RepoScorerService.calculate_health_score(snapshot, 60, now=NOW) == 60
    assert RepoScorerService.calculate_health_score(snapshot, 200, now=NOW) == 50
    assert RepoScorerService.calculate_health_score(snapshot, 400, now=NOW) == 30


def test_archived_or_disabled_repository_scores_zero_health() -> None:
    maximal = dict(
        hasIssuesEnabled=True,
        hasDiscussionsEnabled=True,
        releases={"totalCount": 3, "nodes": [{"tagName": "v2", "publishedAt": NOW.isoformat()}]},
    )

    assert RepoScorerService.calculate_health_score(_snapshot(isArchived=True, **maximal), 1, now=NOW) == 0
    assert RepoScorerService.calculate_health_score(_snapshot(isDisabled=True, **maximal), 1, now=NOW) == 0


def test_days_since_floors_partial_days_and_handles_missing() -> None:
    assert RepoScorerService.days_since((NOW - timedelta(days=2, hours=23)).isoformat(), now=NOW) == 2
    assert RepoScorerService.days_since("2026-03-01T00:00:00Z", now=NOW) == 0
    assert RepoScorerService.days_since(None, now=NOW) is None
    assert RepoScorerService.days_since("not a date", now=NOW) is None
