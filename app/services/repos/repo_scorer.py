"""Activity and health scores for repository snapshots"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


class RepoScorerService:
    """Deterministic scoring over a GitHub GraphQL repository node.

    Both scores only rank repositories relative to each other. They are
    overwritten on every sync and never recomputed retroactively.
    """

    @staticmethod
    def calculate_activity_score(snapshot: dict[str, Any], days_since_last_commit: Optional[int]) -> float:
        """
        Popularity plus push recency plus open-issue engagement.

        - 100 * log10(stars + 1) + 50 * log10(forks + 1)
        - recency: +200 (<=7 days), +100 (<=30), +50 (<=90), none up to a
          year; beyond a year the score accumulated so far is halved
        - + 0.5 per open issue, counting at most 100 issues

        Rounded half-up to 2 decimals. No recency term without a push date.
        """
        stars = _count(snapshot.get("stargazerCount"))
        forks = _count(snapshot.get("forkCount"))
        open_issues = _total_count(snapshot.get("issues"))

        score = math.log10(stars + 1) * 100
        score += math.log10(forks + 1) * 50

        if days_since_last_commit is not None:
            if days_since_last_commit <= 7:
                score += 200
            elif days_since_last_commit <= 30:
                score += 100
            elif days_since_last_commit <= 90:
                score += 50
            elif days_since_last_commit > 365:
                score *= 0.5

        score += min(open_issues, 100) * 0.5

        return _round_half_up(score, 2)

    @staticmethod
    def calculate_health_score(
        snapshot: dict[str, Any],
        days_since_last_commit: Optional[int],
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Maintenance health in [0, 100].

        Starts at 50; +30/+20/+10 for a push within 7/30/90 days, -20 past a
        year; +10 for a release at most 90 days old; +5 for enabled issues
        with open issues; +5 for enabled discussions. Archived or disabled
        repositories always score 0.
        """
        if snapshot.get("isArchived") or snapshot.get("isDisabled"):
            return 0

        score = 50

        if days_since_last_commit is not None:
            if days_since_last_commit <= 7:
                score += 30
            elif days_since_last_commit <= 30:
                score += 20
            elif days_since_last_commit <= 90:
                score += 10
            elif days_since_last_commit > 365:
                score -= 20

        release_age = RepoScorerService.days_since(latest_release(snapshot).get("publishedAt"), now=now)
        if release_age is not None and release_age <= 90:
            score += 10

        if snapshot.get("hasIssuesEnabled") and _total_count(snapshot.get("issues")) > 0:
            score += 5
        if snapshot.get("hasDiscussionsEnabled"):
            score += 5

        return max(0, min(100, int(_round_half_up(score, 0))))

    @staticmethod
    def days_since(timestamp: Any, *, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days elapsed since an ISO-8601 timestamp, or None when absent."""
        moment = parse_timestamp(timestamp)
        if moment is None:
            return None
        reference = now or datetime.now(UTC)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=UTC)
        return math.floor((reference - moment).total_seconds() / 86400)


def latest_release(snapshot: dict[str, Any]) -> dict[str, Any]:
    releases = snapshot.get("releases") or {}
    nodes = releases.get("nodes") or []
    if nodes and isinstance(nodes[0], dict):
        return nodes[0]
    return {}


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = date_parser.isoparse(value.strip())
        except (TypeError, ValueError):
            logger.debug("Ignoring unparseable timestamp %r", value)
            return None
    else:
        return None

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


def _total_count(connection: Any) -> int:
    if isinstance(connection, dict):
        return _count(connection.get("totalCount"))
    return 0


def _round_half_up(value: float, digits: int) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor
