"""Mapping helpers from GitHub payloads to table rows."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Iterable, Optional

from app.services.repos.repo_scorer import RepoScorerService, latest_release, parse_timestamp


def map_node_to_repository_row(node: dict[str, Any], *, now: Optional[datetime] = None) -> dict[str, Any]:
    """Map a GraphQL search node into the `repositories` contract."""

    github_id = node.get("databaseId")
    if not isinstance(github_id, int):
        raise ValueError("Repository node missing databaseId")

    full_name = _text(node.get("nameWithOwner"))
    if not full_name or "/" not in full_name:
        raise ValueError(f"Repository node {github_id} missing nameWithOwner")

    owner = node.get("owner") or {}
    license_info = node.get("licenseInfo") or {}
    default_branch = node.get("defaultBranchRef") or {}
    watchers = _total(node.get("watchers"))
    forks = _int(node.get("forkCount"))

    return {
        "github_id": github_id,
        "name": _text(node.get("name")) or full_name.split("/", 1)[1],
        "full_name": full_name,
        "owner_login": _text(owner.get("login")) or full_name.split("/", 1)[0],
        "owner_avatar_url": _text(owner.get("avatarUrl")),
        "owner_type": _text(owner.get("__typename")),
        "description": _text(node.get("description")),
        "html_url": _text(node.get("url")) or f"https://github.com/{full_name}",
        "homepage_url": _text(node.get("homepageUrl")),
        "stars_count": _int(node.get("stargazerCount")),
        "forks_count": forks,
        "watchers_count": watchers,
        "open_issues_count": _total(node.get("issues")),
        "size_kb": _int(node.get("diskUsage")),
        "language": _text((node.get("primaryLanguage") or {}).get("name")),
        "topics": _topics(node.get("repositoryTopics")),
        "license_name": _text(license_info.get("name")),
        "license_key": _text(license_info.get("key")),
        "created_at": parse_timestamp(node.get("createdAt")),
        "updated_at": parse_timestamp(node.get("updatedAt")),
        "pushed_at": parse_timestamp(node.get("pushedAt")),
        "is_fork": bool(node.get("isFork")),
        "is_archived": bool(node.get("isArchived")),
        "is_disabled": bool(node.get("isDisabled")),
        "allow_forking": bool(node.get("forkingAllowed", True)),
        "is_template": bool(node.get("isTemplate")),
        "visibility": (_text(node.get("visibility")) or "public").lower(),
        "has_issues": bool(node.get("hasIssuesEnabled")),
        "has_projects": bool(node.get("hasProjectsEnabled")),
        "has_downloads": True,
        "has_wiki": bool(node.get("hasWikiEnabled")),
        "has_pages": False,
        "has_discussions": bool(node.get("hasDiscussionsEnabled")),
        "default_branch": _text(default_branch.get("name")) or "main",
        "subscribers_count": watchers,
        "network_count": forks,
        "last_fetched": now or datetime.now(UTC),
    }


def map_node_to_language_rows(node: dict[str, Any]) -> Optional[list[dict[str, Any]]]:
    """Language shares of the snapshot; None when the node carries no language data."""

    languages = node.get("languages")
    if not isinstance(languages, dict):
        return None

    total_size = _int(languages.get("totalSize"))
    rows: dict[str, dict[str, Any]] = {}
    for edge in languages.get("edges") or []:
        name = _text(((edge or {}).get("node") or {}).get("name"))
        if not name:
            continue
        size = _int(edge.get("size"))
        percentage = round(size / total_size * 100, 2) if total_size > 0 else 0.0
        rows[name] = {"language_name": name, "bytes_count": size, "percentage": percentage}
    return list(rows.values())


def map_node_to_stats_row(node: dict[str, Any], *, now: Optional[datetime] = None) -> dict[str, Any]:
    """Sync-owned `repository_stats` columns derived from one snapshot."""

    reference = now or datetime.now(UTC)
    days_since_commit = RepoScorerService.days_since(node.get("pushedAt"), now=reference)
    release = latest_release(node)
    history = (((node.get("defaultBranchRef") or {}).get("target") or {}).get("history")) or {}

    return {
        "commits_last_year": _int(history.get("totalCount")),
        "days_since_last_commit": days_since_commit,
        "days_since_last_release": RepoScorerService.days_since(release.get("publishedAt"), now=reference),
        "latest_release_tag": _text(release.get("tagName")),
        "latest_release_date": parse_timestamp(release.get("publishedAt")),
        "total_releases": _total(node.get("releases")),
        "activity_score": RepoScorerService.calculate_activity_score(node, days_since_commit),
        "health_score": RepoScorerService.calculate_health_score(node, days_since_commit, now=reference),
        "calculated_at": reference,
    }


def map_rest_contributors(payload: Iterable[Any], *, limit: int) -> list[dict[str, Any]]:
    """Normalize REST contributor entries, dropping anonymous ones."""

    rows: list[dict[str, Any]] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        github_id = entry.get("id")
        login = _text(entry.get("login"))
        if not isinstance(github_id, int) or not login:
            continue
        rows.append(
            {
                "github_id": github_id,
                "login": login,
                "avatar_url": _text(entry.get("avatar_url")),
                "html_url": _text(entry.get("html_url")),
                "contributions": _int(entry.get("contributions")),
                "type": _text(entry.get("type")) or "User",
            }
        )
        if len(rows) >= limit:
            break
    return rows


def map_commit_activity_rows(weeks: Iterable[Any]) -> list[dict[str, Any]]:
    """Weekly totals keyed by the unix timestamp GitHub reports for each week."""

    rows: dict[int, dict[str, Any]] = {}
    for week in weeks:
        if not isinstance(week, dict) or not isinstance(week.get("week"), int):
            continue
        timestamp = int(week["week"])
        rows[timestamp] = {
            "week_timestamp": timestamp,
            "week_date": datetime.fromtimestamp(timestamp, tz=UTC).date(),
            "total_commits": _int(week.get("total")),
        }
    return [rows[key] for key in sorted(rows)]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


def _total(connection: Any) -> int:
    if isinstance(connection, dict):
        return _int(connection.get("totalCount"))
    return 0


def _topics(connection: Any) -> list[str]:
    if not isinstance(connection, dict):
        return []
    names = []
    for item in connection.get("nodes") or []:
        name = _text(((item or {}).get("topic") or {}).get("name"))
        if name:
            names.append(name)
    return names
