from __future__ import annotations

import os

# Settings are read at import time; point the app at SQLite before anything imports it.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("GITHUB_TOKEN", "ghp_testtoken")

from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401
from app.config.database import Base  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'githop.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def build_node(
    github_id: int,
    full_name: str,
    *,
    stars: int = 100,
    forks: int = 10,
    open_issues: int = 0,
    pushed_days_ago: Optional[int] = 3,
    languages: Optional[dict[str, int]] = None,
    archived: bool = False,
    release_days_ago: Optional[int] = None,
    **overrides: Any,
) -> dict[str, Any]:
    """GraphQL search node shaped like the sync query result."""

    owner, name = full_name.split("/", 1)
    language_sizes = languages if languages is not None else {"Python": 750, "Shell": 250}
    releases: dict[str, Any] = {"totalCount": 0, "nodes": []}
    if release_days_ago is not None:
        releases = {
            "totalCount": 4,
            "nodes": [
                {"tagName": "v1.0.0", "publishedAt": (NOW - timedelta(days=release_days_ago)).isoformat()}
            ],
        }

    node: dict[str, Any] = {
        "databaseId": github_id,
        "name": name,
        "nameWithOwner": full_name,
        "owner": {"login": owner, "avatarUrl": f"https://avatars.example/{owner}", "__typename": "Organization"},
        "description": f"{name} description",
        "url": f"https://github.com/{full_name}",
        "homepageUrl": None,
        "stargazerCount": stars,
        "forkCount": forks,
        "watchers": {"totalCount": 7},
        "issues": {"totalCount": open_issues},
        "diskUsage": 2048,
        "primaryLanguage": {"name": "Python"},
        "repositoryTopics": {"nodes": [{"topic": {"name": "cli"}}]},
        "languages": {
            "edges": [{"size": size, "node": {"name": lang}} for lang, size in language_sizes.items()],
            "totalSize": sum(language_sizes.values()),
        },
        "licenseInfo": {"name": "MIT License", "key": "mit"},
        "createdAt": "2015-01-01T00:00:00Z",
        "updatedAt": NOW.isoformat(),
        "pushedAt": (NOW - timedelta(days=pushed_days_ago)).isoformat() if pushed_days_ago is not None else None,
        "isFork": False,
        "isArchived": archived,
        "isDisabled": False,
        "forkingAllowed": True,
        "isTemplate": False,
        "visibility": "PUBLIC",
        "hasIssuesEnabled": False,
        "hasProjectsEnabled": True,
        "hasWikiEnabled": True,
        "hasDiscussionsEnabled": False,
        "defaultBranchRef": {"name": "main", "target": {"history": {"totalCount": 1234}}},
        "releases": releases,
    }
    node.update(overrides)
    return node


@pytest.fixture
def make_node():
    return build_node
