"""Top-repository service helpers."""

from app.services.repos.job_ledger import JobAlreadyRunningError, JobLedger
from app.services.repos.leaderboard import InvalidCursorError, RepositoryLeaderboard
from app.services.repos.repo_scorer import RepoScorerService

__all__ = [
    "JobAlreadyRunningError",
    "JobLedger",
    "InvalidCursorError",
    "RepositoryLeaderboard",
    "RepoScorerService",
]
