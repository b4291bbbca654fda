"""
Unit tests for twitclient/engine.py.

Covers the Future contract (non-blocking peek, memoized resolution,
blocking wait, transform chain), cancellation races in both directions,
worker failure capture, and engine lifecycle.  The fake transport's
``gate`` holds the worker inside ``execute`` so each test controls when the
"server" answers.
"""

from __future__ import annotations

import gc
import logging
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from twitclient.engine import PENDING, AsyncEngine, Future
from twitclient.errors import ErrorKind
from twitclient.request import Request

from conftest import TWEET, FakeTransport, stream_connection


def _request(path="statuses/home_timeline"):
    return Request("GET", f"https://api.example/1.1/{path}.json")


def _wait_until(predicate, timeout=5.0):
    """Poll ``predicate`` until it holds (worker reached a known point)."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


@pytest.fixture
def gated():
    transport = FakeTransport()
    transport.gate = threading.Event()
    return transport


class TestFuturePeekAndWait:
    def test_peek_before_response_is_not_ready(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request())
            assert future.peek() == (False, None)
            assert not future.done
            gated.gate.set()
            future.wait(5)

    def test_peek_after_response_is_memoized(self, transport):
        transport.queue(TWEET)
        transform = MagicMock(side_effect=lambda raw: raw.status_code)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request(), transform)
            assert engine.wait_any(5)
            assert future.peek() == (True, 200)

            engine.poll = MagicMock(side_effect=AssertionError("engine contacted again"))
            assert future.peek() == (True, 200)
            assert future.wait() == 200
            assert transform.call_count == 1

    def test_wait_blocks_until_response(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request())
            timer = threading.Timer(0.1, gated.gate.set)
            timer.start()
            raw = future.wait(5)
            timer.join()
        assert raw.status_code == 200
        assert '"just setting up my twttr"' in raw.body

    def test_wait_timeout(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request())
            with pytest.raises(TimeoutError):
                future.wait(0.05)
            gated.gate.set()
            assert future.wait(5).ok

    def test_map_chains_transforms(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request(), lambda raw: raw.status_code)
            future.map(lambda code: code + 1).map(str)
            assert future.wait(5) == "201"

    def test_map_after_resolution_raises(self):
        future = Future.completed("done")
        with pytest.raises(RuntimeError, match="already resolved"):
            future.map(str)

    def test_completed_future(self):
        future = Future.completed(7)
        assert future.done
        assert future.peek() == (True, 7)
        assert future.cancel() == 7

    def test_signer_is_passed_to_transport(self, transport):
        transport.queue(TWEET)
        signer = object()
        with AsyncEngine(transport, signer) as engine:
            engine.dispatch(_request()).wait(5)
        assert transport.requests[0][1] is signer

    def test_several_workers(self, transport):
        for n in range(3):
            transport.queue({"n": n})
        with AsyncEngine(transport, workers=3) as engine:
            futures = [engine.dispatch(_request()) for _ in range(3)]
            bodies = sorted(f.wait(5).body for f in futures)
        assert bodies == ['{"n": 0}', '{"n": 1}', '{"n": 2}']
        assert len({f.id for f in futures}) == 3


class TestCancel:
    def test_cancel_after_completion_returns_real_result(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            assert engine.wait_any(5)
            raw = future.cancel()
        assert raw.ok
        assert raw.status_code == 200

    def test_cancel_pending_discards_late_result(self, gated, caplog):
        gated.queue(TWEET)
        engine = AsyncEngine(gated)
        future = engine.dispatch(_request())
        assert not future.peek()[0]
        _wait_until(lambda: len(gated.requests) == 1)

        with caplog.at_level(logging.WARNING, logger="twitclient.engine"):
            raw = future.cancel()
            assert raw.error.kind == ErrorKind.CANCELLED

            gated.gate.set()
            engine.stop()

        assert not engine.data_available()
        assert future.peek() == (True, raw)
        assert any("Discarding late result" in r.message for r in caplog.records)

    def test_cancel_queued_job_never_runs(self, gated):
        gated.queue(TWEET)
        engine = AsyncEngine(gated)
        first = engine.dispatch(_request("first"))
        second = engine.dispatch(_request("second"))
        assert second.cancel().error.kind == ErrorKind.CANCELLED

        gated.gate.set()
        assert first.wait(5).ok
        engine.stop()
        assert [r.url for r, _ in gated.requests] == [_request("first").url]

    def test_cancel_is_idempotent(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request())
            first = future.cancel()
            assert future.cancel() is first
            gated.gate.set()


class TestWorkerFailures:
    def test_unexpected_exception_becomes_internal_error(self, transport):
        transport.responses.append(RuntimeError("boom"))
        with AsyncEngine(transport) as engine:
            raw = engine.dispatch(_request()).wait(5)
        assert raw.error.kind == ErrorKind.INTERNAL
        assert "boom" in raw.error.message

    def test_connection_error_becomes_transport_error(self, transport):
        transport.responses.append(requests.ConnectionError("reset"))
        with AsyncEngine(transport) as engine:
            raw = engine.dispatch(_request()).wait(5)
        assert raw.error.kind == ErrorKind.TRANSPORT

    def test_worker_survives_failure(self, transport):
        transport.responses.append(RuntimeError("boom"))
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            engine.dispatch(_request()).wait(5)
            assert engine.dispatch(_request()).wait(5).ok


class TestLifecycle:
    def test_workers_start_lazily(self, transport):
        engine = AsyncEngine(transport, workers=2)
        assert not engine.running
        transport.queue(TWEET)
        engine.dispatch(_request()).wait(5)
        assert engine.running
        engine.stop()
        assert not engine.running

    def test_stop_twice(self, transport):
        engine = AsyncEngine(transport)
        engine.start()
        engine.stop()
        engine.stop()

    def test_invalid_worker_count(self, transport):
        with pytest.raises(ValueError):
            AsyncEngine(transport, workers=0)

    def test_unknown_job(self, transport):
        with AsyncEngine(transport) as engine:
            with pytest.raises(KeyError):
                engine.wait_for(999)

    def test_pending_count(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request())
            assert engine.pending == 1
            gated.gate.set()
            future.wait(5)
            assert engine.pending == 0


# ---------------------------------------------------------------------------
# Concurrent readers, failing transforms, result store
# ---------------------------------------------------------------------------

class TestFutureResolution:
    def test_failing_transform_resolves_to_internal_error(self, transport, caplog):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request(), MagicMock(side_effect=ValueError("bad shape")))
            assert engine.wait_any(5)
            with caplog.at_level(logging.ERROR, logger="twitclient.engine"):
                ready, result = future.peek()
        assert ready
        assert result.error.kind == ErrorKind.INTERNAL
        assert "bad shape" in result.error.message
        assert future.peek() == (True, result)
        assert future.wait() is result
        assert any("transform" in r.message for r in caplog.records)

    def test_concurrent_readers_get_same_value(self, transport):
        transport.queue(TWEET)
        started = threading.Event()

        def slow(raw):
            started.set()
            time.sleep(0.3)
            return object()

        results, errors = [], []

        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request(), slow)

            def read():
                try:
                    results.append(future.wait(5))
                except Exception as exc:
                    errors.append(exc)

            first = threading.Thread(target=read)
            first.start()
            assert started.wait(5)
            second = threading.Thread(target=read)
            second.start()
            first.join(5)
            second.join(5)

        assert errors == []
        assert len(results) == 2
        assert results[0] is results[1]

    def test_peek_and_wait_from_two_threads(self, gated):
        gated.queue(TWEET)
        with AsyncEngine(gated) as engine:
            future = engine.dispatch(_request(), lambda raw: raw.status_code)
            waited = []
            reader = threading.Thread(target=lambda: waited.append(future.wait(5)))
            reader.start()
            gated.gate.set()
            _wait_until(lambda: future.peek()[0])
            reader.join(5)
        assert waited == [200]
        assert future.peek() == (True, 200)


class TestResultStore:
    def test_ids_unique_across_threads(self, transport):
        for _ in range(40):
            transport.queue(TWEET)
        futures = []
        lock = threading.Lock()

        with AsyncEngine(transport, workers=4) as engine:
            def submit():
                for _ in range(10):
                    future = engine.dispatch(_request())
                    with lock:
                        futures.append(future)

            threads = [threading.Thread(target=submit) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(5)
            assert all(f.wait(5).ok for f in futures)

        assert len({f.id for f in futures}) == 40

    def test_notice_collected_once(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            assert engine.wait_any(5)
            assert not engine.data_available()
            assert not engine.wait_any(0.05)
            assert future.peek()[0]

    def test_data_available_until_collected(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            _wait_until(engine.data_available)
            assert engine.poll(future.id) is not PENDING
            assert not engine.data_available()

    def test_taken_result_leaves_store(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            assert future.wait(5).ok
            assert engine.poll(future.id) is PENDING
            assert future.wait().ok

    def test_collected_future_releases_result(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            job_id = future.id
            assert engine.wait_any(5)
            del future
            gc.collect()
            assert engine.poll(job_id) is PENDING
            with pytest.raises(KeyError):
                engine.wait_for(job_id, 0)

    def test_collected_pending_future_drops_late_result(self, gated):
        gated.queue(TWEET)
        engine = AsyncEngine(gated)
        future = engine.dispatch(_request())
        _wait_until(lambda: len(gated.requests) == 1)
        del future
        gc.collect()
        assert engine.pending == 0

        gated.gate.set()
        engine.stop()
        assert not engine.data_available()

    def test_release(self, transport):
        transport.queue(TWEET)
        with AsyncEngine(transport) as engine:
            future = engine.dispatch(_request())
            assert engine.wait_any(5)
            engine.release(future.id)
            assert engine.poll(future.id) is PENDING


class TestStreamThreads:
    def test_open_stream_does_not_block_pool(self, transport):
        release = threading.Event()

        def chunks():
            yield b'{"a":1}\r\n'
            release.wait(5)

        transport.streams.append(stream_connection(chunks()))
        transport.queue(TWEET)
        engine = AsyncEngine(transport, workers=1)
        handle = engine.open_stream(_request("statuses/sample"))
        assert handle.wait(5)
        assert handle.is_active()

        assert engine.dispatch(_request()).wait(5).ok
        assert handle.is_active()

        release.set()
        assert handle.future.wait(5).ok
        engine.stop()

    def test_two_streams_open_at_once(self, transport):
        release = threading.Event()

        def chunks(n):
            yield b'{"n":%d}\r\n' % n
            release.wait(5)

        transport.streams.extend([stream_connection(chunks(1)), stream_connection(chunks(2))])
        engine = AsyncEngine(transport, workers=1)
        first = engine.open_stream(_request("statuses/sample"))
        second = engine.open_stream(_request("statuses/filter"))
        assert first.wait(5)
        assert second.wait(5)
        assert {first.next()["n"], second.next()["n"]} == {1, 2}
        assert first.is_active() and second.is_active()

        first.close()
        second.close()
        release.set()
        engine.stop()
        assert not first.is_active()
        assert not second.is_active()

    def test_stop_closes_open_stream(self, transport):
        release = threading.Event()

        def chunks():
            yield b'{"a":1}\r\n'
            release.wait(5)
            yield b'{"b":2}\r\n'

        connection = stream_connection(chunks())
        connection.response.close.side_effect = release.set
        transport.streams.append(connection)
        engine = AsyncEngine(transport)
        handle = engine.open_stream(_request("statuses/sample"))
        assert handle.wait(5)
        assert handle.is_active()

        engine.stop()
        assert connection.closed
        assert handle.future.wait(5).error.kind == ErrorKind.CANCELLED
        assert handle.next() == {"a": 1}
