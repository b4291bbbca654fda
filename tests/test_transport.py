"""
Unit tests for twitclient/transport.py (requests layer mocked).

Covers request preparation (query string vs form body, multipart parts,
signing inputs), status passthrough, categorization of connection-level
failures, and the streaming pump.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import requests

from twitclient.errors import ErrorKind
from twitclient.request import Request
from twitclient.transport import HttpTransport, StreamConnection

from conftest import mock_stream_response


def _response(status=200, text='{"ok": true}', headers=None):
    response = MagicMock()
    response.status_code = status
    response.reason = "OK"
    response.text = text
    response.headers = headers or {"Content-Type": "application/json", "x-rate-limit-remaining": "7"}
    return response


class RecordingSigner:
    def __init__(self):
        self.calls = []

    def sign(self, method, url, params, oauth_params=None):
        self.calls.append((method, url, dict(params)))
        return {"Authorization": "OAuth test"}


class TestPrepare:
    def test_get_uses_query_string(self):
        transport = HttpTransport(session=MagicMock())
        kwargs = transport.prepare(Request("GET", "https://x/a.json", {"count": "5"}))
        assert kwargs["params"] == {"count": "5"}
        assert "data" not in kwargs
        assert kwargs["headers"]["User-Agent"].startswith("twitclient/")

    def test_post_uses_form_body(self):
        transport = HttpTransport(session=MagicMock())
        kwargs = transport.prepare(Request("POST", "https://x/a.json", {"status": "hi"}))
        assert kwargs["data"] == {"status": "hi"}
        assert "params" not in kwargs
        assert "files" not in kwargs

    def test_signer_sees_form_params(self):
        signer = RecordingSigner()
        transport = HttpTransport(session=MagicMock())
        kwargs = transport.prepare(Request("POST", "https://x/a.json", {"status": "hi"}), signer)
        assert signer.calls == [("POST", "https://x/a.json", {"status": "hi"})]
        assert kwargs["headers"]["Authorization"] == "OAuth test"

    def test_multipart_params_not_signed(self):
        signer = RecordingSigner()
        transport = HttpTransport(session=MagicMock())
        req = Request(
            "POST", "https://x/u.json", {"status": "hi"},
            files={"media[]": ("a.png", b"data", "image/png")},
        )
        kwargs = transport.prepare(req, signer)
        assert signer.calls[0][2] == {}
        assert kwargs["files"] == {"media[]": ("a.png", b"data", "image/png")}
        assert kwargs["data"] == {"status": "hi"}


class TestExecute:
    def test_success(self):
        session = MagicMock()
        session.request.return_value = _response()
        raw = HttpTransport(session=session, timeout=12).execute(Request("GET", "https://x/a.json"))
        assert raw.ok
        assert raw.body == '{"ok": true}'
        assert raw.headers.rate_limit["remaining"] == 7
        assert raw.headers.status_line == "HTTP/1.1 200 OK"
        assert session.request.call_args.kwargs["timeout"] == 12

    def test_error_status_is_not_a_transport_error(self):
        session = MagicMock()
        session.request.return_value = _response(status=404, text='{"errors": []}')
        raw = HttpTransport(session=session).execute(Request("GET", "https://x/a.json"))
        assert raw.ok
        assert raw.status_code == 404

    def test_timeout(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("read timed out")
        raw = HttpTransport(session=session).execute(Request("GET", "https://x/a.json"))
        assert raw.error.kind == ErrorKind.TIMEOUT
        assert raw.body is None

    def test_connection_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("dns failure")
        raw = HttpTransport(session=session).execute(Request("GET", "https://x/a.json"))
        assert raw.error.kind == ErrorKind.TRANSPORT
        assert "dns failure" in raw.error.detail

    def test_close_closes_session(self):
        session = MagicMock()
        HttpTransport(session=session).close()
        session.close.assert_called_once()


class TestOpenStream:
    def test_open(self):
        session = MagicMock()
        session.request.return_value = mock_stream_response([b"x"])
        connection, failure = HttpTransport(session=session).open_stream(
            Request("GET", "https://s/sample.json", stream=True)
        )
        assert failure is None
        assert connection.status_code == 200
        assert session.request.call_args.kwargs["stream"] is True

    def test_open_failure(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        connection, failure = HttpTransport(session=session).open_stream(
            Request("GET", "https://s/sample.json", stream=True)
        )
        assert connection is None
        assert failure.error.kind == ErrorKind.TRANSPORT


class TestStreamConnectionPump:
    def test_chunks_fed_in_order(self):
        received = []
        connection = StreamConnection(mock_stream_response([b"a", b"", b"b"]))
        raw = connection.pump(received.append, threading.Event())
        assert received == [b"a", b"b"]
        assert raw.ok
        assert connection.closed

    def test_cancelled_before_start(self):
        received = []
        cancelled = threading.Event()
        cancelled.set()
        connection = StreamConnection(mock_stream_response([b"a"]))
        raw = connection.pump(received.append, cancelled)
        assert received == []
        assert raw.error.kind == ErrorKind.CANCELLED

    def test_read_error(self):
        def chunks():
            yield b"a"
            raise requests.exceptions.ChunkedEncodingError("connection broken")

        connection = StreamConnection(mock_stream_response(chunks()))
        raw = connection.pump(lambda chunk: None, threading.Event())
        assert raw.error.kind == ErrorKind.TRANSPORT

    def test_error_status_returns_body(self):
        connection = StreamConnection(mock_stream_response([], status=401, body="Unauthorized"))
        raw = connection.pump(lambda chunk: None, threading.Event())
        assert raw.status_code == 401
        assert raw.body == "Unauthorized"
