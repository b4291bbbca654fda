"""
Caller-level retry: backoff schedule and a retrying call wrapper.

The client itself never retries.  Code that wants transient failures
retried wraps its calls with ``call_with_retry``, which uses the fixed
schedule from ``config.RETRY_BACKOFF_SECONDS``:
  attempt 1 → wait 10 s, attempt 2 → wait 30 s, attempt 3 → wait 90 s.
Rate-limited calls wait until the ``x-rate-limit-reset`` time instead.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from .config import RETRY_BACKOFF_SECONDS, RETRY_MAX_ATTEMPTS, RETRY_MAX_WAIT_SECONDS
from .errors import CallError, ErrorKind
from .objects import CallResult, Headers

logger = logging.getLogger(__name__)

# API error codes and HTTP statuses meaning "try again later"
RATE_LIMIT_CODES: frozenset[int] = frozenset({88, 429})
OVER_CAPACITY_CODES: frozenset[int] = frozenset({130, 131, 500, 502, 503, 504})


def is_rate_limited(error: CallError | None) -> bool:
    return error is not None and error.kind == ErrorKind.API and error.code in RATE_LIMIT_CODES


def should_retry(error: CallError | None, attempt: int, max_attempts: int = RETRY_MAX_ATTEMPTS) -> bool:
    """
    Decide whether a failed call should be retried.

    Args:
        error: Error of the attempt that just failed.
        attempt: The 1-based attempt number that just failed.
        max_attempts: Total attempts allowed (initial + retries).

    Returns:
        ``True`` if the call should be retried.
    """
    if error is None or attempt >= max_attempts:
        return False

    if error.kind in ErrorKind.RETRIABLE:
        return True

    if error.kind == ErrorKind.API:
        return error.code in RATE_LIMIT_CODES or error.code in OVER_CAPACITY_CODES

    return False


def backoff_seconds(
    attempt: int,
    headers: Headers | None = None,
    now: Callable[[], float] = time.time,
) -> float:
    """
    Return the wait time in seconds before the next attempt.

    When ``headers`` carry ``x-rate-limit-reset`` (epoch seconds), the wait
    lasts until that time, capped at ``RETRY_MAX_WAIT_SECONDS``; otherwise
    the fixed schedule applies.

    Args:
        attempt: 1-based attempt number that just failed.
        headers: Response headers of the failed attempt.
        now: Clock returning the current epoch time.
    """
    if headers is not None:
        reset = headers.rate_limit.get("reset")
        if reset is not None:
            return float(min(max(reset - now(), 0), RETRY_MAX_WAIT_SECONDS))
    return float(RETRY_BACKOFF_SECONDS.get(attempt, max(RETRY_BACKOFF_SECONDS.values())))


def call_with_retry(
    client,
    endpoint: str,
    args: Mapping[str, Any] | None = None,
    max_attempts: int = RETRY_MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> CallResult:
    """
    Perform a synchronous call, retrying transient failures.

    Each attempt is an independent call; the request is rebuilt and signed
    again every time.

    Args:
        client: ``Client`` to call through.
        endpoint: Catalog name of the endpoint.
        args: Call arguments (internal options such as ``_async`` are
              removed; retries are always synchronous).
        max_attempts: Total attempts allowed (initial call + retries).
        sleep: Called with the wait time between attempts.

    Returns:
        The ``CallResult`` of the last attempt.
    """
    args = {k: v for k, v in (args or {}).items() if k != "_async"}
    attempt = 0
    while True:
        attempt += 1
        result = client.call(endpoint, args)
        if result.ok:
            return result

        logger.warning("%s: attempt %d/%d failed %s", endpoint, attempt, max_attempts, result.error)
        if not should_retry(result.error, attempt, max_attempts):
            return result

        headers = result.headers if is_rate_limited(result.error) else None
        wait = backoff_seconds(attempt, headers)
        logger.info("%s: retrying in %.0f s", endpoint, wait)
        sleep(wait)
