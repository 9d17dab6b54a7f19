from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from app.services.repos.repo_mapper import (
    map_commit_activity_rows,
    map_node_to_language_rows,
    map_node_to_repository_row,
    map_node_to_stats_row,
    map_rest_contributors,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_repository_row_maps_identity_counters_and_flags(make_node) -> None:
    node = make_node(42, "acme/rocket", stars=1500, forks=30, open_issues=4, archived=True)

    row = map_node_to_repository_row(node, now=NOW)

    assert row["github_id"] == 42
    assert row["full_name"] == "acme/rocket"
    assert row["name"] == "rocket"
    assert row["owner_login"] == "acme"
    assert row["stars_count"] == 1500
    assert row["forks_count"] == 30
    assert row["open_issues_count"] == 4
    assert row["topics"] == ["cli"]
    assert row["license_key"] == "mit"
    assert row["is_archived"] is True
    assert row["visibility"] == "public"
    assert row["default_branch"] == "main"
    assert row["last_fetched"] == NOW


def test_repository_row_requires_name_with_owner(make_node) -> None:
    node = make_node(7, "acme/rocket", nameWithOwner=None)

    with pytest.raises(ValueError):
        map_node_to_repository_row(node, now=NOW)


def test_language_rows_use_snapshot_total_and_two_decimals(make_node) -> None:
    node = make_node(1, "acme/rocket", languages={"Python": 2, "C": 1})

    rows = map_node_to_language_rows(node)

    assert rows == [
        {"language_name": "Python", "bytes_count": 2, "percentage": 66.67},
        {"language_name": "C", "bytes_count": 1, "percentage": 33.33},
    ]


def test_language_rows_are_none_without_language_data(make_node) -> None:
    node = make_node(1, "acme/rocket")
    node["languages"] = None

    assert map_node_to_language_rows(node) is None


def test_stats_row_carries_scores_and_release_facts(make_node) -> None:
    node = make_node(1, "acme/rocket", stars=1000, forks=200, open_issues=10, release_days_ago=10)

    row = map_node_to_stats_row(node, now=NOW)

    assert row["commits_last_year"] == 1234
    assert row["days_since_last_commit"] == 3
    assert row["days_since_last_release"] == 10
    assert row["latest_release_tag"] == "v1.0.0"
    assert row["total_releases"] == 4
    assert row["activity_score"] == 620.2
    assert row["health_score"] == 90
    assert row["calculated_at"] == NOW
    assert "contributors_data_type" not in row


def test_rest_contributors_skip_anonymous_entries_and_cap() -> None:
    payload = [
        {"id": 1, "login": "alice", "contributions": 50, "type": "User"},
        {"login": "anonymous", "contributions": 40, "type": "Anonymous"},
        {"id": 2, "login": "dependabot[bot]", "contributions": 30, "type": "Bot"},
        {"id": 3, "login": "carol", "contributions": 20},
    ]

    rows = map_rest_contributors(payload, limit=2)

    assert [row["login"] for row in rows] == ["alice", "dependabot[bot]"]
    assert rows[1]["type"] == "Bot"
    assert map_rest_contributors(payload, limit=5)[-1]["type"] == "User"


def test_commit_activity_rows_sorted_with_utc_week_date() -> None:
    weeks = [
        {"week": 1704067200, "total": 12, "days": [0, 2, 2, 2, 2, 2, 2]},
        {"week": 1703462400, "total": 3},
        {"total": 99},
    ]

    rows = map_commit_activity_rows(weeks)

    assert [row["week_timestamp"] for row in rows] == [1703462400, 1704067200]
    assert rows[0]["week_date"] == date(2023, 12, 25)
    assert rows[1]["week_date"] == date(2024, 1, 1)
    assert rows[1]["total_commits"] == 12
