"""
Background execution of HTTP exchanges on a pool of worker threads.

The engine hands out a ``Future`` per dispatched job.  Workers never return
values to callers directly: each finished job is posted, with its
correlation id, to the engine's completion channel.  Callers move posted
completions into the per-id result store when they poll (``peek``) or block
(``wait``) on a future; a result leaves the store once its future has
taken it (or has been garbage collected).

One-shot exchanges share the worker pool.  Every stream gets a thread of
its own for the lifetime of its connection, so open streams never hold up
the pool.

Shared state (completion channel, result store, pending/cancelled ids,
open stream connections) is guarded by one lock; ``_ready`` is the
condition on that lock that workers notify when they post a completion.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
import weakref
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .config import ASYNC_WORKER_COUNT, ENGINE_JOIN_TIMEOUT_SECONDS, ENGINE_POLL_SECONDS
from .errors import CallError, ErrorKind, cancelled_error, categorize_exception
from .objects import OBJECTS, CallResult, ObjectType
from .request import Request
from .signing import Signer
from .stream import StreamHandle, stream_result
from .transport import HttpTransport, RawResponse, StreamConnection

logger = logging.getLogger(__name__)


class _Pending:
    def __repr__(self) -> str:
        return "<pending>"


PENDING = _Pending()


# ---------------------------------------------------------------------------
# Future
# ---------------------------------------------------------------------------

class Future:
    """
    Handle to the eventual result of one asynchronous call.

    Transitions from pending to resolved exactly once.  The resolved value
    (after the transform chain) is memoized; later reads never contact the
    engine again.  Any number of threads may read the same future: a reader
    arriving while another one runs the transforms waits for it and gets
    the same value.

    A transform that raises resolves the future to a ``CallResult`` with an
    ``INTERNAL`` error.
    """

    def __init__(self, job_id: int, engine: AsyncEngine | None, transform: Callable | None = None):
        self.id = job_id
        self.engine = engine
        self._transforms: list[Callable] = [transform] if transform else []
        self._raw: Any = PENDING
        self._value: Any = PENDING
        self._lock = threading.Lock()
        if engine is not None:
            weakref.finalize(self, engine.release, job_id)

    @classmethod
    def completed(cls, value: Any) -> Future:
        """Future already resolved to ``value`` (no engine involved)."""
        future = cls(0, None)
        future._value = value
        return future

    def __repr__(self) -> str:
        state = "resolved" if self.done else "pending"
        return f"<Future id={self.id} {state}>"

    @property
    def done(self) -> bool:
        return self._value is not PENDING

    def map(self, f: Callable) -> Future:
        """Append ``f`` to the chain applied to the raw result."""
        with self._lock:
            if self.done:
                raise RuntimeError(f"future {self.id} is already resolved")
            self._transforms.append(f)
        return self

    def _apply(self, raw: Any) -> Any:
        value = raw
        try:
            for f in self._transforms:
                value = f(value)
        except Exception as exc:
            logger.exception("Result transform of job %d failed", self.id)
            return CallResult(
                error=CallError(ErrorKind.INTERNAL, f"result transform failed: {exc}", detail=repr(exc))
            )
        return value

    def _take(self, raw: Any) -> Any:
        # The raw result is kept before the transforms run, so it is never lost.
        with self._lock:
            if self._value is PENDING:
                if self._raw is PENDING:
                    self._raw = raw
                    self.engine.release(self.id)
                self._value = self._apply(self._raw)
            return self._value

    def peek(self) -> tuple[bool, Any]:
        """
        Check (non-blocking) whether the result is ready.

        Returns:
            ``(True, value)`` when resolved, ``(False, None)`` otherwise.
        """
        if self.done:
            return True, self._value
        raw = self.engine.poll(self.id)
        if raw is PENDING and self._raw is PENDING:
            return False, None
        return True, self._take(raw)

    def wait(self, timeout: float | None = None) -> Any:
        """
        Block until the result is ready and return it.

        Raises:
            TimeoutError: ``timeout`` seconds elapsed first.
        """
        if self.done:
            return self._value
        try:
            raw = self.engine.wait_for(self.id, timeout)
        except KeyError:
            # Another reader took the result first.
            if self._raw is PENDING:
                raise
            raw = PENDING
        if raw is PENDING and self._raw is PENDING:
            raise TimeoutError(f"future {self.id} not resolved after {timeout} seconds")
        return self._take(raw)

    def cancel(self) -> Any:
        """
        Cancel the call if it is still pending.

        Returns the real result when the job already finished, otherwise the
        result of a ``CANCELLED`` error.  Never raises because of a race with
        the worker.
        """
        if self.done:
            return self._value
        raw = self.engine.cancel(self.id)
        if raw is PENDING and self._raw is PENDING:
            raw = RawResponse(error=cancelled_error())
        return self._take(raw)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class _Job:
    id: int
    request: Request
    sink: Any = None   # stream sink: ``connected(status, headers)`` + ``feed(bytes)``

    @property
    def is_stream(self) -> bool:
        return self.sink is not None


class AsyncEngine:
    """
    Pool of persistent worker threads executing transport calls.

    Workers are started lazily on the first dispatch and live until
    ``stop()``.  Streams run on their own threads, started per connection.
    Usable as a context manager.
    """

    def __init__(
        self,
        transport: HttpTransport | None = None,
        signer: Signer | None = None,
        workers: int = ASYNC_WORKER_COUNT,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.transport = transport or HttpTransport()
        self.signer = signer
        self.num_workers = workers

        self._jobs: queue.Queue[_Job | None] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._stream_threads: dict[int, threading.Thread] = {}
        self._ids = itertools.count(1)

        # Re-entrant: a future finalizer may call release() from any point.
        self._lock = threading.RLock()
        self._ready = threading.Condition(self._lock)
        self._completions: deque[tuple[int, RawResponse]] = deque()
        self._store: dict[int, RawResponse] = {}
        self._pending: set[int] = set()
        self._cancelled: set[int] = set()
        self._abandoned: set[int] = set()
        self._connections: dict[int, StreamConnection] = {}
        self._cancel_events: dict[int, threading.Event] = {}

    def __enter__(self) -> AsyncEngine:
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # -- lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        """Start the worker threads (no-op when already running)."""
        with self._lock:
            if self._threads:
                return
            for n in range(self.num_workers):
                thread = threading.Thread(
                    target=self._worker, daemon=True, name=f"twitclient-worker-{n + 1}"
                )
                thread.start()
                self._threads.append(thread)
        logger.debug("Started %d async worker(s)", self.num_workers)

    def stop(self) -> None:
        """
        Signal every worker to exit and join them.

        Jobs still queued are dropped and resolved as cancelled; open streams
        are closed.  Jobs already running are not waited for beyond
        ``ENGINE_JOIN_TIMEOUT_SECONDS``.
        """
        with self._lock:
            threads, self._threads = self._threads, []
            streams = list(self._stream_threads.values())
            connections = list(self._connections.values())
            events = list(self._cancel_events.values())
        if not threads and not streams:
            return

        dropped = []
        while True:
            try:
                job = self._jobs.get_nowait()
            except queue.Empty:
                break
            if job is not None:
                dropped.append(job)
        for event in events:
            event.set()
        for connection in connections:
            connection.close()
        for _ in threads:
            self._jobs.put(None)
        for thread in [*threads, *streams]:
            thread.join(ENGINE_JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning("Thread %s did not exit in time", thread.name)

        for job in dropped:
            self._post(job.id, RawResponse(error=cancelled_error()))
        logger.debug("Stopped %d async worker(s) and %d stream(s)", len(threads), len(streams))

    # -- dispatch -----------------------------------------------------------

    def _submit(self, request: Request, sink=None) -> int:
        with self._lock:
            job_id = next(self._ids)
            self._pending.add(job_id)
        job = _Job(job_id, request, sink)
        if job.is_stream:
            thread = threading.Thread(
                target=self._execute, args=(job,), daemon=True, name=f"twitclient-stream-{job_id}"
            )
            with self._lock:
                self._stream_threads[job_id] = thread
            thread.start()
        else:
            self.start()
            self._jobs.put(job)
        logger.debug("Dispatched job %d: %s %s", job_id, request.method, request.url)
        return job_id

    def dispatch(self, request: Request, transform: Callable | None = None) -> Future:
        """
        Queue one exchange for a worker and return immediately.

        Args:
            request: Request to send.
            transform: Applied to the ``RawResponse`` when the future resolves.

        Returns:
            ``Future`` whose id matches the queued job.
        """
        return Future(self._submit(request), self, transform)

    def dispatch_stream(self, request: Request, sink, transform: Callable | None = None) -> Future:
        """
        Open a streaming connection on a dedicated thread.  The thread feeds
        received bytes to ``sink`` and the future resolves when the
        connection closes.
        """
        return Future(self._submit(request, sink), self, transform)

    def open_stream(
        self,
        request: Request,
        type_name: str | None = None,
        catalog: Mapping[str, ObjectType] = OBJECTS,
        delimited: bool = False,
    ) -> StreamHandle:
        """
        Open a streaming connection in the background.

        Returns:
            ``StreamHandle`` whose future resolves to a ``CallResult`` when
            the connection closes.
        """
        handle = StreamHandle(type_name, catalog, delimited)
        handle.future = self.dispatch_stream(
            request, handle, lambda raw: stream_result(raw, catalog)
        )
        return handle

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    # -- worker side --------------------------------------------------------

    def _worker(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                break
            self._execute(job)

    def _execute(self, job: _Job) -> None:
        with self._lock:
            skip = job.id in self._cancelled or job.id in self._abandoned
            self._cancelled.discard(job.id)
            self._abandoned.discard(job.id)
        if not skip:
            self._post(job.id, self._run(job))
        if job.is_stream:
            job.sink.finished()
            with self._lock:
                self._stream_threads.pop(job.id, None)

    def _run(self, job: _Job) -> RawResponse:
        try:
            if job.is_stream:
                return self._run_stream(job)
            return self.transport.execute(job.request, self.signer)
        except Exception as exc:
            # Nothing may escape a worker: failures become result values.
            logger.exception("Job %d failed", job.id)
            return RawResponse(error=categorize_exception(exc))

    def _run_stream(self, job: _Job) -> RawResponse:
        cancelled = threading.Event()
        with self._lock:
            self._cancel_events[job.id] = cancelled
            if job.id in self._cancelled or job.id in self._abandoned:
                cancelled.set()
        try:
            connection, failure = self.transport.open_stream(job.request, self.signer)
            if failure is not None:
                return failure
            with self._lock:
                self._connections[job.id] = connection
            if cancelled.is_set():
                connection.close()
                return RawResponse(None, connection.status_code, connection.headers, cancelled_error())
            job.sink.connected(connection.status_code, connection.headers)
            return connection.pump(job.sink.feed, cancelled)
        finally:
            with self._lock:
                self._cancel_events.pop(job.id, None)
                self._connections.pop(job.id, None)

    def _post(self, job_id: int, raw: RawResponse) -> None:
        with self._ready:
            self._pending.discard(job_id)
            if job_id in self._cancelled:
                self._cancelled.discard(job_id)
                logger.warning("Discarding late result of cancelled job %d", job_id)
                return
            if job_id in self._abandoned:
                self._abandoned.discard(job_id)
                logger.debug("Discarding result of abandoned job %d", job_id)
                return
            self._completions.append((job_id, raw))
            self._ready.notify_all()

    # -- caller side --------------------------------------------------------

    def _drain(self) -> None:
        # Caller must hold self._lock.
        while self._completions:
            job_id, raw = self._completions.popleft()
            self._store[job_id] = raw

    def data_available(self) -> bool:
        """``True`` when completion notices arrived since they were last collected."""
        with self._lock:
            return bool(self._completions)

    def poll(self, job_id: int) -> RawResponse | _Pending:
        """Non-blocking: the result of ``job_id`` if it has been posted."""
        with self._lock:
            self._drain()
            return self._store.get(job_id, PENDING)

    def wait_for(self, job_id: int, timeout: float | None = None) -> RawResponse | _Pending:
        """
        Block until the result of ``job_id`` is posted and return it.

        Returns ``PENDING`` if ``timeout`` elapses first.

        Raises:
            KeyError: ``job_id`` is neither pending nor stored.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._ready:
            while True:
                self._drain()
                if job_id in self._store:
                    return self._store[job_id]
                if job_id not in self._pending:
                    raise KeyError(f"unknown or already consumed job {job_id}")
                if deadline is None:
                    self._ready.wait(ENGINE_POLL_SECONDS)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return PENDING
                self._ready.wait(min(remaining, ENGINE_POLL_SECONDS))

    def wait_any(self, timeout: float | None = ENGINE_POLL_SECONDS) -> bool:
        """
        Block until a new completion notice arrives and collect it.

        Notices are collected once: results nobody has read yet do not make
        later calls return immediately.  ``False`` on timeout.
        """
        with self._ready:
            if not self._ready.wait_for(lambda: bool(self._completions), timeout):
                return False
            self._drain()
            return True

    def _interrupt(self, job_id: int) -> None:
        # Stops the connection of a running stream; no-op for other jobs.
        with self._lock:
            event = self._cancel_events.get(job_id)
            connection = self._connections.get(job_id)
        if event is not None:
            event.set()
        if connection is not None:
            connection.close()

    def release(self, job_id: int) -> None:
        """
        Forget ``job_id``: its future has taken the result or is gone.

        A job still in flight is abandoned: its result is dropped on arrival
        and an open stream is closed.
        """
        with self._lock:
            self._store.pop(job_id, None)
            if job_id not in self._pending:
                return
            self._pending.discard(job_id)
            self._abandoned.add(job_id)
        self._interrupt(job_id)

    def cancel(self, job_id: int) -> RawResponse | _Pending:
        """
        Cancel ``job_id``.

        Returns the posted result when the job already finished, ``PENDING``
        when it was still in flight (its late result will be discarded).
        """
        with self._lock:
            self._drain()
            if job_id in self._store:
                return self._store[job_id]
            if job_id in self._pending:
                self._pending.discard(job_id)
                self._cancelled.add(job_id)
        self._interrupt(job_id)
        logger.debug("Cancelled job %d", job_id)
        return PENDING
