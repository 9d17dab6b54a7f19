"""Capped exponential backoff for rate-limited and transient upstream calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from app.config.settings import settings
from app.crawlers.repos.client import sanitize_log_extra
from app.crawlers.repos.contracts import FetchResult, FetchState, RetriesExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


class _RetryableFetch(Exception):
    """Carries a rate-limited/transient result through tenacity."""

    def __init__(self, result: FetchResult[Any]) -> None:
        super().__init__(result.error or result.state.value)
        self.result = result


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Per-state base delay doubling on each attempt, capped and attempt-limited."""

    rate_limit_base_seconds: float = 60.0
    transient_base_seconds: float = 10.0
    max_wait_seconds: float = 900.0
    max_attempts: int = 6

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            rate_limit_base_seconds=settings.RATE_LIMIT_BACKOFF_SECONDS,
            transient_base_seconds=settings.TRANSIENT_BACKOFF_SECONDS,
            max_wait_seconds=settings.BACKOFF_MAX_SECONDS,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
        )

    def delay_for(self, result: Optional[FetchResult[Any]], attempt_number: int) -> float:
        if result is not None and result.state == FetchState.RATE_LIMITED:
            base = self.rate_limit_base_seconds
        else:
            base = self.transient_base_seconds
        delay = base * (2 ** max(attempt_number - 1, 0))
        if result is not None and result.retry_after:
            delay = max(delay, float(result.retry_after))
        return min(delay, self.max_wait_seconds)

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return self.delay_for(getattr(exc, "result", None), retry_state.attempt_number)


async def fetch_with_backoff(
    fetch: Callable[[], Awaitable[FetchResult[T]]],
    *,
    unit: str,
    policy: Optional[BackoffPolicy] = None,
    sleep: SleepFn = asyncio.sleep,
    on_backoff: Optional[Callable[[FetchResult[Any], float], None]] = None,
) -> FetchResult[T]:
    """Call `fetch` until it returns a non-retryable result.

    Raises `RetriesExhaustedError` once `policy.max_attempts` rate-limited or
    transient results have been seen for the same unit.
    """

    active_policy = policy or BackoffPolicy.from_settings()

    def _log_backoff(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        result = getattr(exc, "result", None)
        logger.warning(
            "Backing off before retrying upstream call",
            extra=sanitize_log_extra(
                unit=unit,
                attempt=retry_state.attempt_number,
                state=result.state.value if result is not None else None,
                error=result.error if result is not None else None,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            ),
        )
        if on_backoff is not None and result is not None:
            on_backoff(result, retry_state.next_action.sleep if retry_state.next_action else 0.0)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(active_policy.max_attempts),
            wait=active_policy,
            retry=retry_if_exception_type(_RetryableFetch),
            before_sleep=_log_backoff,
            sleep=sleep,
            reraise=True,
        ):
            with attempt:
                result = await fetch()
                if result.is_retryable:
                    raise _RetryableFetch(result)
                return result
    except _RetryableFetch as exc:
        raise RetriesExhaustedError(unit, active_policy.max_attempts, exc.result) from None

    raise RetriesExhaustedError(unit, active_policy.max_attempts)
