"""Read side: enriched repository listing, detail and aggregates."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import func, select, tuple_

from app.config.settings import settings
from app.models.repository import Repository
from app.models.repository_commit_activity import RepositoryCommitActivity
from app.models.repository_contributor import RepositoryContributor
from app.models.repository_language import RepositoryLanguage
from app.models.repository_stats import RepositoryStats


class InvalidCursorError(ValueError):
    """Raised when only half of the (stars, id) cursor is supplied."""


def enriched_repositories_select():
    """Repositories joined with their stats row (absent stats come back as None)."""

    return select(Repository, RepositoryStats).outerjoin(
        RepositoryStats,
        RepositoryStats.repository_id == Repository.id,
    )


class RepositoryLeaderboard:
    """Queries backing the leaderboard and repository detail views."""

    def __init__(self, db: Any) -> None:
        self._db = db

    def list_top(
        self,
        *,
        limit: Optional[int] = None,
        last_stars: Optional[int] = None,
        last_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """Stars-descending page after the `(last_stars, last_id)` cursor.

        Ties on stars are broken by id so consecutive pages never overlap or
        skip rows. `next_cursor` is only set when the page came back full.
        """

        if (last_stars is None) != (last_id is None):
            raise InvalidCursorError("last_stars and last_id must be provided together")

        page_size = max(1, min(limit or settings.LEADERBOARD_DEFAULT_LIMIT, settings.LEADERBOARD_MAX_LIMIT))
        statement = enriched_repositories_select()
        if last_stars is not None:
            statement = statement.where(
                tuple_(Repository.stars_count, Repository.id) < tuple_(last_stars, last_id)
            )
        statement = statement.order_by(Repository.stars_count.desc(), Repository.id.desc()).limit(page_size)

        rows = self._db.execute(statement).all()
        items = [serialize_repository(repository, stats) for repository, stats in rows]

        next_cursor = None
        if len(items) == page_size:
            last = rows[-1][0]
            next_cursor = {"last_stars": last.stars_count, "last_id": last.id}
        return {"items": items, "next_cursor": next_cursor}

    def get_by_full_name(self, full_name: str) -> Optional[dict[str, Any]]:
        row = self._db.execute(
            enriched_repositories_select().where(func.lower(Repository.full_name) == full_name.strip().lower())
        ).first()
        if row is None:
            return None
        return serialize_repository(*row)

    def get_details(self, repository_id: int) -> Optional[dict[str, Any]]:
        row = self._db.execute(enriched_repositories_select().where(Repository.id == repository_id)).first()
        if row is None:
            return None

        languages = self._db.execute(
            select(RepositoryLanguage)
            .where(RepositoryLanguage.repository_id == repository_id)
            .order_by(RepositoryLanguage.bytes_count.desc(), RepositoryLanguage.language_name)
        ).scalars()

        payload = serialize_repository(*row)
        payload["languages"] = [
            {
                "name": language.language_name,
                "bytes": int(language.bytes_count or 0),
                "percentage": float(language.percentage or 0),
            }
            for language in languages
        ]
        return payload

    def list_contributors(self, repository_id: int) -> list[dict[str, Any]]:
        contributors = self._db.execute(
            select(RepositoryContributor)
            .where(RepositoryContributor.repository_id == repository_id)
            .order_by(RepositoryContributor.contributions.desc(), func.lower(RepositoryContributor.login))
        ).scalars()
        return [
            {
                "github_id": contributor.github_id,
                "login": contributor.login,
                "avatar_url": contributor.avatar_url,
                "html_url": contributor.html_url,
                "contributions": contributor.contributions,
                "type": contributor.type,
                "fetched_at": _iso(contributor.fetched_at),
            }
            for contributor in contributors
        ]

    def list_commit_activity(self, repository_id: int) -> list[dict[str, Any]]:
        weeks = self._db.execute(
            select(RepositoryCommitActivity)
            .where(RepositoryCommitActivity.repository_id == repository_id)
            .order_by(RepositoryCommitActivity.week_timestamp)
        ).scalars()
        return [
            {
                "week_timestamp": week.week_timestamp,
                "week_date": week.week_date.isoformat(),
                "total_commits": week.total_commits,
            }
            for week in weeks
        ]

    def totals(self) -> dict[str, Any]:
        repositories, stars, last_fetched = self._db.execute(
            select(func.count(Repository.id), func.coalesce(func.sum(Repository.stars_count), 0), func.max(Repository.last_fetched))
        ).one()
        return {
            "repositories": int(repositories or 0),
            "total_stars": int(stars or 0),
            "languages": int(
                self._db.execute(select(func.count(func.distinct(RepositoryLanguage.language_name)))).scalar_one() or 0
            ),
            "contributors": int(self._db.execute(select(func.count(RepositoryContributor.id))).scalar_one() or 0),
            "commit_activity_weeks": int(
                self._db.execute(select(func.count(RepositoryCommitActivity.id))).scalar_one() or 0
            ),
            "last_fetched": _iso(last_fetched),
        }

    def exists(self, repository_id: int) -> bool:
        return self._db.execute(select(Repository.id).where(Repository.id == repository_id)).first() is not None

    def count_repositories(self) -> int:
        return int(self._db.execute(select(func.count(Repository.id))).scalar_one() or 0)


def serialize_repository(repository: Repository, stats: Optional[RepositoryStats]) -> dict[str, Any]:
    payload = {
        "id": repository.id,
        "github_id": repository.github_id,
        "name": repository.name,
        "full_name": repository.full_name,
        "owner_login": repository.owner_login,
        "owner_avatar_url": repository.owner_avatar_url,
        "description": repository.description,
        "html_url": repository.html_url,
        "homepage_url": repository.homepage_url,
        "stars_count": repository.stars_count,
        "forks_count": repository.forks_count,
        "watchers_count": repository.watchers_count,
        "open_issues_count": repository.open_issues_count,
        "language": repository.language,
        "topics": list(repository.topics or []),
        "license_name": repository.license_name,
        "is_archived": repository.is_archived,
        "is_fork": repository.is_fork,
        "pushed_at": _iso(repository.pushed_at),
        "last_fetched": _iso(repository.last_fetched),
        "stats": None,
    }
    if stats is not None:
        payload["stats"] = {
            "activity_score": float(stats.activity_score or 0),
            "health_score": float(stats.health_score or 0),
            "commits_last_year": stats.commits_last_year,
            "days_since_last_commit": stats.days_since_last_commit,
            "days_since_last_release": stats.days_since_last_release,
            "latest_release_tag": stats.latest_release_tag,
            "latest_release_date": _iso(stats.latest_release_date),
            "total_releases": stats.total_releases,
            "contributors_data_type": stats.contributors_data_type,
            "contributors_updated_at": _iso(stats.contributors_updated_at),
            "calculated_at": _iso(stats.calculated_at),
        }
    return payload


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()
