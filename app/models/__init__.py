"""Database models"""

from app.models.background_job import BackgroundJob, JobStatus, JobType
from app.models.repository import Repository
from app.models.repository_commit_activity import RepositoryCommitActivity
from app.models.repository_contributor import RepositoryContributor
from app.models.repository_language import RepositoryLanguage
from app.models.repository_stats import ContributorsDataType, RepositoryStats

__all__ = [
    "BackgroundJob",
    "JobStatus",
    "JobType",
    "Repository",
    "RepositoryCommitActivity",
    "RepositoryContributor",
    "RepositoryLanguage",
    "RepositoryStats",
    "ContributorsDataType",
]
