"""Async GitHub client for top-repository sync and enrichment."""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Optional

import httpx

from app.config.settings import settings
from app.crawlers.repos.contracts import (
    CommitActivityResult,
    CommitHistoryPage,
    CommitHistoryResult,
    ContributorsResult,
    FetchResult,
    FetchState,
    GitHubAuthError,
    GitHubTokenMissingError,
    SearchPage,
    SearchResult,
)
from app.crawlers.repos.queries import RECENT_COMMIT_AUTHORS_QUERY, SEARCH_TOP_REPOSITORIES_QUERY

logger = logging.getLogger(__name__)

# Marker in the 403 body GitHub returns when a repository's contributor list cannot be served.
TOO_LARGE_MESSAGE_MARKER = "too large"

_REDACTED_VALUE = "***REDACTED***"
_SENSITIVE_KEYS = (
    "authorization",
    "token",
    "api_key",
    "apikey",
    "secret",
    "password",
    "cookie",
    "session",
)
_PAYLOAD_KEYS = ("body", "raw", "content", "payload", "response")
_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)(token\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(access_token=)[^&\s]+"),
    re.compile(r"(?i)(api[_-]?key\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(cookie\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"\b(gh[pousr]_)[A-Za-z0-9]{20,}\b"),
)


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a recursively sanitized copy of log payloads."""

    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            field = str(raw_key)
            if _contains_keyword(field, _SENSITIVE_KEYS):
                sanitized[field] = _REDACTED_VALUE
                continue
            if _contains_keyword(field, _PAYLOAD_KEYS) and isinstance(raw_value, str):
                sanitized[field] = _redact_payload(raw_value)
                continue
            sanitized[field] = sanitize_for_log(raw_value, key=field)
        return sanitized

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]

    if isinstance(value, str):
        redacted = _redact_text(value)
        if key and _contains_keyword(key, _PAYLOAD_KEYS):
            return _redact_payload(redacted)
        return redacted

    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return {key: sanitize_for_log(value, key=key) for key, value in kwargs.items()}


def _contains_keyword(field_name: str, keywords: tuple[str, ...]) -> bool:
    lowered = field_name.lower()
    return any(keyword in lowered for keyword in keywords)


def _redact_payload(raw: str) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return ""
    return f"<redacted payload ({len(raw)} chars)>"


def _redact_text(raw: str) -> str:
    redacted = raw
    for pattern in _TOKEN_PATTERNS:
        redacted = pattern.sub(rf"\1{_REDACTED_VALUE}", redacted)
    return redacted


class GitHubRepoClient:
    """GraphQL + REST client that classifies every outcome into a `FetchState`.

    Rate limits, transient failures, too-large lists and missing data are
    returned as states so callers can pick a strategy. Credential problems
    raise `GitHubFatalError` subclasses instead.
    """

    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        if not self._token:
            raise GitHubTokenMissingError("GITHUB_TOKEN is not set.")
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._base_url = base_url or settings.GITHUB_API_BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubRepoClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search_top_repositories(
        self,
        *,
        limit: int,
        cursor: Optional[str] = None,
        query: Optional[str] = None,
    ) -> SearchResult:
        """Fetch one page of repositories ordered by stars, descending."""

        response = await self._graphql(
            SEARCH_TOP_REPOSITORIES_QUERY,
            {"query": query or settings.SYNC_SEARCH_QUERY, "limit": limit, "cursor": cursor},
        )
        if not response.is_ok:
            return FetchResult(
                state=response.state,
                status_code=response.status_code,
                error=response.error,
                retry_after=response.retry_after,
            )

        search = (response.data or {}).get("search") or {}
        page_info = search.get("pageInfo") or {}
        nodes = [
            node
            for node in (search.get("nodes") or [])
            if isinstance(node, dict) and isinstance(node.get("databaseId"), int)
        ]
        page = SearchPage(
            nodes=nodes,
            end_cursor=page_info.get("endCursor"),
            has_next_page=bool(page_info.get("hasNextPage")),
        )
        state = FetchState.OK if nodes else FetchState.EMPTY
        return FetchResult(state=state, data=page, status_code=response.status_code)

    async def list_contributors(self, owner: str, repo: str, *, per_page: int = 30) -> ContributorsResult:
        """All-time top contributors from the REST contributors endpoint."""

        return await self._rest_get(f"/repos/{owner}/{repo}/contributors", params={"per_page": per_page})

    async def list_commit_authors(
        self,
        owner: str,
        repo: str,
        *,
        first: int = 100,
        cursor: Optional[str] = None,
    ) -> CommitHistoryResult:
        """One page of default-branch commit authors via GraphQL."""

        response = await self._graphql(
            RECENT_COMMIT_AUTHORS_QUERY,
            {"owner": owner, "name": repo, "first": first, "cursor": cursor},
        )
        if not response.is_ok:
            return FetchResult(
                state=response.state,
                status_code=response.status_code,
                error=response.error,
                retry_after=response.retry_after,
            )

        repository = (response.data or {}).get("repository")
        if repository is None:
            return FetchResult(state=FetchState.NOT_FOUND, status_code=response.status_code, error="repository not found")

        history = (((repository.get("defaultBranchRef") or {}).get("target") or {}).get("history")) or None
        if not history or not history.get("nodes"):
            return FetchResult(state=FetchState.EMPTY, data=CommitHistoryPage(), status_code=response.status_code)

        authors = []
        for node in history.get("nodes") or []:
            user = ((node or {}).get("author") or {}).get("user")
            if isinstance(user, dict) and user.get("databaseId"):
                authors.append(user)

        page_info = history.get("pageInfo") or {}
        return FetchResult(
            state=FetchState.OK,
            data=CommitHistoryPage(
                authors=authors,
                end_cursor=page_info.get("endCursor"),
                has_next_page=bool(page_info.get("hasNextPage")),
            ),
            status_code=response.status_code,
        )

    async def get_commit_activity(self, owner: str, repo: str) -> CommitActivityResult:
        """Weekly commit totals for the last year; `COMPUTING` while GitHub builds them."""

        return await self._rest_get(f"/repos/{owner}/{repo}/stats/commit_activity")

    async def _rest_get(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        client = await self._ensure_client()
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            return self._transport_failure(path, exc)

        if response.status_code == 202:
            return FetchResult(state=FetchState.COMPUTING, status_code=202)
        if response.status_code == 204:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=204)
        if response.status_code >= 400:
            return self._classify_error(path, response)

        try:
            payload = response.json()
        except ValueError as exc:
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error=f"invalid JSON: {exc}")

        if payload is None or (isinstance(payload, (list, dict)) and len(payload) == 0):
            return FetchResult(state=FetchState.EMPTY, data=payload, status_code=response.status_code)
        return FetchResult(state=FetchState.OK, data=payload, status_code=response.status_code)

    async def _graphql(self, query: str, variables: dict[str, Any]) -> FetchResult[dict[str, Any]]:
        client = await self._ensure_client()
        try:
            response = await client.post("/graphql", json={"query": query, "variables": variables})
        except httpx.HTTPError as exc:
            return self._transport_failure("/graphql", exc)

        if response.status_code >= 400:
            return self._classify_error("/graphql", response)

        try:
            payload = response.json()
        except ValueError as exc:
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error=f"invalid JSON: {exc}")

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            return self._classify_graphql_errors(errors, status_code=response.status_code)

        return FetchResult(state=FetchState.OK, data=payload.get("data") or {}, status_code=response.status_code)

    def _classify_error(self, path: str, response: httpx.Response) -> FetchResult[Any]:
        status = response.status_code
        message = self._error_message(response)

        if status == 401:
            raise GitHubAuthError(f"GitHub rejected the configured token ({status}): {_redact_text(message)}")

        if status == 403 and TOO_LARGE_MESSAGE_MARKER in message.lower():
            return FetchResult(state=FetchState.TOO_LARGE, status_code=status, error=message)

        if status == 429 or (status == 403 and self._is_rate_limited(response.headers, message)):
            wait_seconds = self._compute_rate_limit_wait(response.headers)
            logger.warning(
                "GitHub API rate limit encountered",
                extra=sanitize_log_extra(path=path, status_code=status, retry_after_seconds=wait_seconds),
            )
            return FetchResult(
                state=FetchState.RATE_LIMITED,
                status_code=status,
                error=message or "rate limited",
                retry_after=wait_seconds,
            )

        if status in (404, 410, 451):
            return FetchResult(state=FetchState.NOT_FOUND, status_code=status, error=message or "not found")

        if status >= 500:
            logger.warning(
                "GitHub API transient error",
                extra=sanitize_log_extra(path=path, status_code=status, error=message),
            )
            return FetchResult(state=FetchState.TRANSIENT, status_code=status, error=message or f"server error {status}")

        return FetchResult(state=FetchState.FAILED, status_code=status, error=message or f"client error {status}")

    @staticmethod
    def _classify_graphql_errors(errors: list[Any], *, status_code: int) -> FetchResult[dict[str, Any]]:
        types = {str(error.get("type") or "").upper() for error in errors if isinstance(error, dict)}
        messages = "; ".join(str(error.get("message") or "") for error in errors if isinstance(error, dict))

        if "RATE_LIMITED" in types or "rate limit" in messages.lower():
            return FetchResult(state=FetchState.RATE_LIMITED, status_code=status_code, error=messages or "rate limited")
        if "NOT_FOUND" in types:
            return FetchResult(state=FetchState.NOT_FOUND, status_code=status_code, error=messages or "not found")
        return FetchResult(state=FetchState.FAILED, status_code=status_code, error=messages or "GraphQL error")

    @staticmethod
    def _transport_failure(path: str, exc: httpx.HTTPError) -> FetchResult[Any]:
        logger.warning(
            "GitHub request failed before a response was received",
            extra=sanitize_log_extra(path=path, error=str(exc)),
        )
        return FetchResult(state=FetchState.TRANSIENT, error=f"{type(exc).__name__}: {exc}")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or ""
        if isinstance(payload, dict):
            return str(payload.get("message") or "")
        return ""

    @staticmethod
    def _is_rate_limited(headers: httpx.Headers, message: str) -> bool:
        if headers.get("x-ratelimit-remaining") == "0":
            return True
        if headers.get("retry-after") is not None:
            return True
        return "rate limit" in message.lower()

    def _compute_rate_limit_wait(self, headers: httpx.Headers) -> Optional[float]:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass

        reset_raw = headers.get("x-ratelimit-reset")
        if reset_raw is not None:
            try:
                return float(max(int(reset_raw) - int(time.time()), 0))
            except ValueError:
                pass

        return None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Accept": self.ACCEPT_JSON,
                "Authorization": f"Bearer {self._token}",
                "User-Agent": settings.USER_AGENT,
                "X-GitHub-Api-Version": self.API_VERSION,
            },
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client
