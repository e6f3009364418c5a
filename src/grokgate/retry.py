"""
Status-driven retry around a single upstream call.

The loop per call:
  1. Build a RetryPolicy from the settings snapshot (once, not per attempt).
  2. Await the wrapped action; on success return its result.
  3. On failure, pull an integer status out of the error.
       - no status                      → re-raise (non-retryable failure)
       - status not in retry_codes      → re-raise (non-retryable status)
       - retry budget already spent     → re-raise (retries exhausted)
  4. Otherwise count the retry, wait 500 ms × retry number (linear backoff),
     notify the optional on_retry hook, and go back to 2.

Errors are always re-raised as the original object; FailureKind only labels
the log line. Each call has its own counter; nothing is shared across calls.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from .models import (
    DEFAULT_MAX_RETRY,
    DEFAULT_RETRY_CODES,
    GrokSettings,
    normalize_max_retry,
    normalize_retry_codes,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_STEP_MS = 500

StatusExtractor = Callable[[BaseException], Optional[int]]
RetryCallback = Callable[[int, int, BaseException], Union[None, Awaitable[None]]]


class FailureKind(str, Enum):
    """Why a failure was surfaced instead of retried."""
    # No integer status could be extracted from the error
    NON_RETRYABLE_FAILURE = "NON_RETRYABLE_FAILURE"
    # Status extracted but not configured as retryable
    NON_RETRYABLE_STATUS = "NON_RETRYABLE_STATUS"
    # Retryable status, but max_retry retries were already made
    RETRY_BUDGET_EXHAUSTED = "RETRY_BUDGET_EXHAUSTED"


@dataclass(frozen=True)
class RetryPolicy:
    max_retry: int = DEFAULT_MAX_RETRY
    retry_codes: tuple[int, ...] = DEFAULT_RETRY_CODES

    @classmethod
    def from_settings(cls, settings: GrokSettings) -> "RetryPolicy":
        return cls(
            max_retry=normalize_max_retry(settings.max_retry),
            retry_codes=tuple(normalize_retry_codes(settings.retry_codes)),
        )

    def is_retryable(self, status: int) -> bool:
        return status in self.retry_codes


# ── Helpers ───────────────────────────────────────────────────────────────────


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def default_extract_status(error: BaseException) -> Optional[int]:
    """
    `error.status`, else `error.details.status` (details may be a mapping or
    an object). A present top-level status wins even if it is not an integer.
    """
    status = getattr(error, "status", None)
    if status is None:
        details = getattr(error, "details", None)
        if isinstance(details, Mapping):
            status = details.get("status")
        elif details is not None:
            status = getattr(details, "status", None)
    return _as_status(status)


def backoff_delay_ms(attempt: int) -> int:
    """Delay before retry number `attempt` (1-based): 500, 1000, 1500, ..."""
    return BACKOFF_STEP_MS * attempt


def classify_failure(
    status: Optional[int],
    attempts: int,
    policy: RetryPolicy,
) -> Optional[FailureKind]:
    """Return why the failure is terminal, or None if it should be retried."""
    if status is None:
        return FailureKind.NON_RETRYABLE_FAILURE
    if not policy.is_retryable(status):
        return FailureKind.NON_RETRYABLE_STATUS
    if attempts >= policy.max_retry:
        return FailureKind.RETRY_BUDGET_EXHAUSTED
    return None


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _log_terminal(
    kind: FailureKind,
    error: BaseException,
    status: Optional[int],
    attempts: int,
    policy: RetryPolicy,
) -> None:
    if kind is FailureKind.NON_RETRYABLE_FAILURE:
        logger.error("Non-retryable error: %s", error)
    elif kind is FailureKind.NON_RETRYABLE_STATUS:
        logger.error("Non-retryable status code: %s", status)
    else:
        if attempts > 0:
            logger.warning("Retry %d/%d for status %s, failed", attempts, policy.max_retry, status)
        logger.error("Retry exhausted after %d attempts, last status: %s", policy.max_retry, status)


# ── Executor ──────────────────────────────────────────────────────────────────


async def with_retry(
    action: Callable[[], Awaitable[T]],
    *,
    settings: GrokSettings,
    extract_status: Optional[StatusExtractor] = None,
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """
    Await `action()` until it succeeds or fails terminally.

    Parameters
    ----------
    action:
        Zero-argument coroutine function; called once per attempt.
    settings:
        Settings snapshot the RetryPolicy is built from.
    extract_status:
        Maps an error to its integer status or None. Defaults to
        default_extract_status().
    on_retry:
        Called as on_retry(attempt, status, error) before each backoff wait;
        awaited if it returns an awaitable.
    """
    policy = RetryPolicy.from_settings(settings)
    extract = extract_status or default_extract_status
    attempts = 0

    while True:
        try:
            result = await action()
        except Exception as error:
            status = _as_status(extract(error))
            kind = classify_failure(status, attempts, policy)
            if kind is not None:
                _log_terminal(kind, error, status, attempts, policy)
                raise

            attempts += 1
            delay = backoff_delay_ms(attempts)
            logger.warning(
                "Retry %d/%d for status %s, waiting %dms",
                attempts, policy.max_retry, status, delay,
            )
            if on_retry is not None:
                outcome = on_retry(attempts, status, error)
                if inspect.isawaitable(outcome):
                    await outcome
            await _sleep(delay / 1000)
            continue

        if attempts > 0:
            logger.info("Retry succeeded after %d attempts", attempts)
        return result
