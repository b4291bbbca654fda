"""
Streaming connections: record framing, record typing, and the consumer handle.

A worker thread feeds raw bytes into a ``StreamHandle`` as they arrive; the
consumer pulls decoded, tagged records with ``next()`` (or by iterating).
Splitting and decoding happen on the consumer side, so a slow consumer never
stalls the connection.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from .errors import CallError, ErrorKind
from .objects import OBJECTS, CallResult, Headers, ObjectType, tag
from .parser import decode_response, parse_json

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = b"\r\n"

# Type tag of records that could not be decoded
INTERNAL_ERROR_TYPE = "internal_error"


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def split_records(buffer: bytearray) -> list[bytes]:
    """
    Remove every complete CRLF-terminated line from ``buffer``.

    The partial tail after the last separator stays in ``buffer``.  Empty
    lines (keep-alive newlines) are dropped.

    Args:
        buffer: Receive buffer, modified in place.

    Returns:
        Complete lines without their separators, in arrival order.
    """
    end = buffer.rfind(RECORD_SEPARATOR)
    if end < 0:
        return []
    complete = bytes(buffer[:end])
    del buffer[:end + len(RECORD_SEPARATOR)]
    return [line for line in complete.split(RECORD_SEPARATOR) if line.strip()]


class LengthDelimitedSplitter:
    """
    Framing for ``delimited=length`` streams.

    Each record is preceded by a line holding its size in bytes.  A bare
    integer line is consumed as that size, never delivered as a record.
    """

    def __init__(self):
        self.expected: int | None = None

    def __call__(self, buffer: bytearray) -> list[bytes]:
        records = []
        while True:
            if self.expected is None:
                end = buffer.find(RECORD_SEPARATOR)
                if end < 0:
                    break
                line = bytes(buffer[:end]).strip()
                del buffer[:end + len(RECORD_SEPARATOR)]
                if not line:
                    continue
                if line.isdigit():
                    self.expected = int(line)
                else:
                    # Unframed record; deliver it as is.
                    records.append(line)
            else:
                if len(buffer) < self.expected:
                    break
                records.append(bytes(buffer[:self.expected]).strip())
                del buffer[:self.expected]
                self.expected = None
        return records


# ---------------------------------------------------------------------------
# Record types
# ---------------------------------------------------------------------------

# First matching key wins
_RECORD_KEYS: tuple[tuple[str, str], ...] = (
    ("delete", "tweet_deleted"),
    ("event", "stream_event"),
    ("friends", "friend_list"),
    ("friends_str", "friend_list"),
    ("direct_message", "stream_dm"),
    ("limit", "stream_limit"),
    ("disconnect", "stream_disconnect"),
    ("warning", "stream_warning"),
)


def detect_stream_type(value: Any) -> str | None:
    """Type name of one decoded stream record (``None`` for scalars)."""
    if not isinstance(value, Mapping):
        return None
    if "errors" in value:
        return "error"
    if "text" in value and "user" in value:
        return "tweet"
    for key, type_name in _RECORD_KEYS:
        if key in value:
            return type_name
    return "stream_message"


def stream_result(raw, catalog: Mapping[str, ObjectType] = OBJECTS) -> CallResult:
    """
    Final result of a stream connection, from the engine's ``RawResponse``.

    A connection refused with an error status carries the API error body;
    a normal close resolves with no value and no error.
    """
    if raw.error is not None:
        return CallResult(error=raw.error, status_code=raw.status_code, headers=raw.headers)
    if raw.body:
        return decode_response(raw.body, raw.status_code, raw.headers, None, catalog)
    return CallResult(status_code=raw.status_code, headers=raw.headers)


# ---------------------------------------------------------------------------
# Consumer handle
# ---------------------------------------------------------------------------

class StreamHandle:
    """
    Consumer side of one streaming connection.

    Single pass: every record is delivered once.  The connection's own
    ``Future`` (set by the engine) tells whether the connection is still
    open, and resolves to a ``CallResult`` once it closes.
    """

    def __init__(
        self,
        type_name: str | None = None,
        catalog: Mapping[str, ObjectType] = OBJECTS,
        delimited: bool = False,
    ):
        self.type_name = type_name
        self.catalog = catalog
        self.future = None
        self.status_code: int | None = None
        self.records_received = 0

        self._split: Callable[[bytearray], list[bytes]] = (
            LengthDelimitedSplitter() if delimited else split_records
        )
        self._pipe: list[Callable] = []
        self._headers: Headers | None = None
        self._buffer = bytearray()
        self._records: deque = deque()
        self._finished = False
        self._fed = 0    # chunks received
        self._seen = 0   # chunks received at the last extraction
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)

    def __repr__(self) -> str:
        state = "active" if self.is_active() else "closed"
        return f"<StreamHandle {self.type_name or 'auto'} {state} records={self.records_received}>"

    # -- sink side (worker thread) -------------------------------------------

    def connected(self, status_code: int, headers: Headers) -> None:
        with self._changed:
            self.status_code = status_code
            self._headers = headers
            self._changed.notify_all()

    def feed(self, data: bytes) -> None:
        with self._changed:
            self._buffer += data
            self._fed += 1
            self._changed.notify_all()

    def finished(self) -> None:
        with self._changed:
            self._finished = True
            self._changed.notify_all()

    # -- consumer side ------------------------------------------------------

    @property
    def headers(self) -> Headers | None:
        return self._headers

    def map(self, f: Callable) -> StreamHandle:
        """Append ``f`` to the functions applied to every decoded record."""
        self._pipe.append(f)
        return self

    def _decode(self, line: bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            error = CallError(ErrorKind.DECODE, "invalid UTF-8 in stream record", detail=str(exc))
            return self._internal_error(error, line)

        value, error = parse_json(text, None, self.catalog)
        if error is not None:
            return self._internal_error(error, line)
        type_name = self.type_name or detect_stream_type(value)
        if type_name is not None and value is not None:
            value = tag(value, type_name, self.catalog)
        for f in self._pipe:
            value = f(value)
        return value

    def _internal_error(self, error: CallError, line: bytes):
        logger.warning("Undecodable stream record: %s", error)
        record = {"error": error.message, "detail": error.detail, "line": line.decode("utf-8", "replace")}
        return tag(record, INTERNAL_ERROR_TYPE, self.catalog)

    def _extract(self) -> None:
        # Split and decode under the lock so concurrent readers keep arrival order.
        with self._lock:
            self._seen = self._fed
            if not self._buffer:
                return
            records = [r for r in map(self._decode, self._split(self._buffer)) if r is not None]
            if records:
                logger.debug("Extracted %d stream record(s)", len(records))
                self._records.extend(records)
                self.records_received += len(records)

    def next(self):
        """
        Return the next queued record, or ``None`` when nothing is available
        right now (which does not mean the stream has ended).
        """
        self._extract()
        with self._lock:
            if self._records:
                return self._records.popleft()
        return None

    def __iter__(self) -> Iterator[Any]:
        """Yield the records available now; stops when the queue is empty."""
        while True:
            record = self.next()
            if record is None:
                return
            yield record

    def is_active(self) -> bool:
        """``False`` once the connection has closed or failed."""
        if self.future is None:
            return False
        ready, _ = self.future.peek()
        return not ready

    @property
    def result(self) -> CallResult | None:
        """How the connection ended, or ``None`` while it is open."""
        if self.future is None:
            return None
        ready, value = self.future.peek()
        return value if ready else None

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until new bytes arrive or the connection ends.

        Returns ``False`` on timeout.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: self._records or self._fed != self._seen or self._finished, timeout
            )

    def close(self) -> CallResult | None:
        """
        Cancel the connection.  Records already received can still be read
        with ``next()``.
        """
        if self.future is None:
            return None
        return self.future.cancel()
