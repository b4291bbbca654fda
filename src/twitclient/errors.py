"""
Error taxonomy for the request/response pipeline.

Only catalog-configuration defects are raised (``CatalogError``).  Every other
failure travels as a ``CallError`` value inside the call result, both for
synchronous calls and for futures resolved on a worker thread.
"""

from __future__ import annotations

from dataclasses import dataclass

import requests


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class ErrorKind:
    """
    Error category constants for call failures.

    Categories drive caller-level retry decisions (see ``retry.py``):
    transient errors may be retried with backoff, permanent ones are
    reported immediately.
    """

    VALIDATION = "validation"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    API = "api"
    DECODE = "decode"
    CANCELLED = "cancelled"
    INTERNAL = "internal"

    # Transient errors that a caller may retry
    RETRIABLE: frozenset[str] = frozenset({TRANSPORT, TIMEOUT})
    # Errors where a retry with the same arguments cannot succeed
    PERMANENT: frozenset[str] = frozenset({VALIDATION, DECODE, CANCELLED, INTERNAL})


@dataclass(frozen=True)
class CallError:
    """
    Descriptor of a failed call.

    Attributes:
        kind: One of the ``ErrorKind`` constants.
        message: Human-readable description.
        code: API error code (``errors[0].code``) or HTTP status, if known.
        detail: Original detail from the decoder or the HTTP stack.
    """

    kind: str
    message: str
    code: int | None = None
    detail: str | None = None

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.kind} {self.code}] {self.message}"
        return f"[{self.kind}] {self.message}"


class CatalogError(Exception):
    """An endpoint or object catalog entry is broken (programming error)."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def validation_error(message: str) -> CallError:
    return CallError(ErrorKind.VALIDATION, message)


def cancelled_error() -> CallError:
    return CallError(ErrorKind.CANCELLED, "cancelled")


def categorize_exception(exc: BaseException) -> CallError:
    """
    Classify a low-level exception raised during an HTTP exchange.

    Timeouts are kept distinct from other connection failures (DNS, TLS,
    reset) so that callers can pick different retry policies.

    Args:
        exc: Exception raised by ``requests`` or the socket layer.

    Returns:
        ``CallError`` with kind ``TIMEOUT``, ``TRANSPORT`` or ``INTERNAL``.
    """
    if isinstance(exc, requests.Timeout):
        return CallError(ErrorKind.TIMEOUT, "request timed out", detail=str(exc))

    if isinstance(exc, (requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
        return CallError(ErrorKind.TRANSPORT, "connection failed", detail=str(exc))

    if isinstance(exc, requests.RequestException):
        return CallError(ErrorKind.TRANSPORT, "request failed", detail=str(exc))

    if isinstance(exc, OSError):
        return CallError(ErrorKind.TRANSPORT, "socket error", detail=str(exc))

    return CallError(ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}", detail=repr(exc))
