"""Typed results and errors returned by the repository-hosting client."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FetchState(str, enum.Enum):
    """Outcome of one upstream call, as seen by callers."""

    OK = "ok"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    COMPUTING = "computing"
    TOO_LARGE = "too_large"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FAILED = "failed"


RETRYABLE_STATES = frozenset({FetchState.RATE_LIMITED, FetchState.TRANSIENT})


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Upstream payload plus the classified state of the call."""

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    retry_after: Optional[float] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_retryable(self) -> bool:
        return self.state in RETRYABLE_STATES


@dataclass(slots=True)
class SearchPage:
    """One page of repository search results."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    end_cursor: Optional[str] = None
    has_next_page: bool = False


@dataclass(slots=True)
class CommitHistoryPage:
    """One page of default-branch commit authorship."""

    authors: list[dict[str, Any]] = field(default_factory=list)
    end_cursor: Optional[str] = None
    has_next_page: bool = False


class GitHubFatalError(Exception):
    """Credential problems that must abort the whole run."""


class GitHubTokenMissingError(GitHubFatalError):
    """Raised when a client is built without a bearer token."""


class GitHubAuthError(GitHubFatalError):
    """Raised when the upstream rejects the configured credential."""


class RetriesExhaustedError(Exception):
    """A rate-limited or transient unit kept failing past the attempt cap."""

    def __init__(self, unit: str, attempts: int, last_result: Optional[FetchResult[Any]] = None) -> None:
        self.unit = unit
        self.attempts = attempts
        self.last_result = last_result
        state = last_result.state.value if last_result is not None else "unknown"
        super().__init__(f"gave up after {attempts} attempts on {unit} (last state: {state})")


SearchResult = FetchResult[SearchPage]
ContributorsResult = FetchResult[list[dict[str, Any]]]
CommitHistoryResult = FetchResult[CommitHistoryPage]
CommitActivityResult = FetchResult[list[dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """Identity of a stored repository handed to enrichment stages."""

    id: int
    full_name: str
