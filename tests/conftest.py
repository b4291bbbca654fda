"""
Shared pytest fixtures for the client pipeline tests.

No test touches the network: ``FakeTransport`` stands in for
``HttpTransport`` (same ``execute`` / ``open_stream`` interface) and replays
queued responses.  ``gate`` lets a test hold a worker inside ``execute``
until it sets the event, to control the ordering of async tests.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from unittest.mock import MagicMock

import pytest

from twitclient.client import Client
from twitclient.objects import Headers
from twitclient.transport import RawResponse, StreamConnection


# ---------------------------------------------------------------------------
# Canned bodies
# ---------------------------------------------------------------------------

USER = {"id": 12, "id_str": "12", "screen_name": "jack", "name": "Jack"}

TWEET = {
    "id": 20,
    "id_str": "20",
    "text": "just setting up my twttr",
    "user": USER,
    "entities": {"hashtags": [], "urls": []},
}

USER_CURSOR_PAGE_1 = {
    "users": [USER, {"id": 13, "id_str": "13", "screen_name": "biz"}],
    "next_cursor": 1374004777531007833,
    "next_cursor_str": "1374004777531007833",
    "previous_cursor": 0,
    "previous_cursor_str": "0",
}

USER_CURSOR_LAST = {
    "users": [{"id": 14, "id_str": "14", "screen_name": "ev"}],
    "next_cursor": 0,
    "next_cursor_str": "0",
    "previous_cursor": -1374004777531007833,
    "previous_cursor_str": "-1374004777531007833",
}

NOT_FOUND = {"errors": [{"code": 34, "message": "Sorry, that page does not exist."}]}

RATE_LIMITED = {"errors": [{"code": 88, "message": "Rate limit exceeded"}]}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

def raw(body, status: int = 200, headers: dict | None = None) -> RawResponse:
    """``RawResponse`` with ``body`` JSON-encoded unless it is already a string."""
    if not isinstance(body, str) and body is not None:
        body = json.dumps(body)
    return RawResponse(body, status, Headers(headers or {"content-type": "application/json"}))


class FakeTransport:
    """Replays queued responses and records every request it is given."""

    def __init__(self):
        self.responses: deque = deque()
        self.streams: deque = deque()
        self.requests: list = []
        self.gate: threading.Event | None = None
        self.closed = False

    def queue(self, body, status: int = 200, headers: dict | None = None) -> FakeTransport:
        self.responses.append(raw(body, status, headers))
        return self

    def execute(self, request, signer=None):
        self.requests.append((request, signer))
        if self.gate is not None:
            self.gate.wait(5)
        response = self.responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    def open_stream(self, request, signer=None):
        self.requests.append((request, signer))
        return self.streams.popleft(), None

    def close(self):
        self.closed = True

    @property
    def last_request(self):
        return self.requests[-1][0]


def mock_stream_response(chunks, status: int = 200, body: str = "") -> MagicMock:
    """``requests.Response`` stand-in for a streaming connection."""
    response = MagicMock()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.headers = {"content-type": "application/json"}
    response.url = "https://stream.twitter.com/1.1/statuses/sample.json"
    response.text = body
    response.iter_content.return_value = iter(chunks)
    return response


def stream_connection(chunks, status: int = 200, body: str = "") -> StreamConnection:
    return StreamConnection(mock_stream_response(chunks, status, body))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    """Client with consumer + user keys over the fake transport."""
    keys = {
        "consumer_key": "ck",
        "consumer_secret": "cs",
        "oauth_token": "tok",
        "oauth_token_secret": "toksecret",
    }
    c = Client(keys, transport=transport)
    yield c
    c.close()
