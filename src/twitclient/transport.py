"""
HTTP transport: one request/response exchange, or one streaming connection.

Design notes:
- No retries and no status interpretation happen here.  A non-2xx reply is
  a successful exchange; only low-level failures (DNS, TLS, reset, timeout)
  produce an error, categorized by ``errors.categorize_exception``.
- Requests are signed at send time, so a ``Request`` can be sent again
  (refetch, caller-level retry) with a fresh nonce and timestamp.
- Streaming connections are read chunk by chunk, as the bytes arrive, and
  handed to a sink; the exchange "completes" when the connection closes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import requests

from .config import (
    REQUEST_TIMEOUT_SECONDS,
    STREAM_CHUNK_SIZE,
    STREAM_CONNECT_TIMEOUT_SECONDS,
    STREAM_STALL_SECONDS,
    USER_AGENT,
)
from .errors import CallError, categorize_exception, cancelled_error
from .objects import Headers
from .parser import parse_headers
from .request import Request
from .signing import Signer

logger = logging.getLogger(__name__)


@dataclass
class RawResponse:
    """Undecoded result of one exchange (or of a closed stream)."""

    body: str | None = None
    status_code: int | None = None
    headers: Headers | None = None
    error: CallError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _response_headers(response: requests.Response) -> Headers:
    headers = parse_headers(dict(response.headers))
    headers.status_line = f"HTTP/1.1 {response.status_code} {response.reason or ''}".rstrip()
    return headers


# ---------------------------------------------------------------------------
# Streaming connection
# ---------------------------------------------------------------------------

class StreamConnection:
    """An open streaming response, read incrementally by one worker."""

    def __init__(self, response: requests.Response, chunk_size: int | None = STREAM_CHUNK_SIZE):
        self.response = response
        self.chunk_size = chunk_size
        self.status_code = response.status_code
        self.headers = _response_headers(response)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def chunks(self) -> Iterator[bytes]:
        return self.response.iter_content(chunk_size=self.chunk_size)

    def close(self) -> None:
        """Close the connection; safe to call from any thread, more than once."""
        if not self._closed.is_set():
            self._closed.set()
            self.response.close()

    def pump(self, sink: Callable[[bytes], None], cancelled: threading.Event) -> RawResponse:
        """
        Read chunks into ``sink`` until the connection ends or is cancelled.

        A non-2xx status is not streamed: the whole body is read and returned
        so that the caller can decode the API error.

        Args:
            sink: Called with every non-empty chunk, in arrival order.
            cancelled: Set by another thread to stop reading.

        Returns:
            ``RawResponse`` describing how the connection ended.
        """
        if self.status_code >= 400:
            body = self.response.text
            self.close()
            return RawResponse(body, self.status_code, self.headers)

        try:
            for chunk in self.chunks():
                if cancelled.is_set():
                    break
                if chunk:
                    sink(chunk)
        except (requests.RequestException, OSError, AttributeError, ValueError) as exc:
            # Closing the response from another thread surfaces here as a
            # read on a released connection.
            if not cancelled.is_set():
                logger.warning("Stream %s ended with error: %s", self.response.url, exc)
                self.close()
                return RawResponse(None, self.status_code, self.headers, categorize_exception(exc))
        finally:
            self.close()

        if cancelled.is_set():
            return RawResponse(None, self.status_code, self.headers, cancelled_error())
        return RawResponse(None, self.status_code, self.headers)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class HttpTransport:
    """
    ``requests``-based transport.

    One ``requests.Session`` per transport keeps connections alive between
    calls; a transport is shared by the synchronous path and the workers of
    one engine.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        user_agent: str = USER_AGENT,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent

    def close(self) -> None:
        self.session.close()

    def prepare(self, request: Request, signer: Signer | None = None) -> dict:
        """
        Build the keyword arguments for ``requests.Session.request``.

        Query-string methods carry the parameters in the URL; the others send
        them as a form body (or as multipart fields next to the files).
        """
        headers = {"User-Agent": self.user_agent, "Accept-Encoding": "gzip, deflate"}
        headers.update(request.headers)
        if signer is not None:
            signed_params = {} if request.multipart else request.params
            headers.update(signer.sign(request.method, request.url, signed_params))

        kwargs: dict = {
            "method": request.method,
            "url": request.url,
            "headers": headers,
        }
        if request.sends_body:
            kwargs["data"] = request.params
            if request.multipart:
                kwargs["files"] = request.files
        else:
            kwargs["params"] = request.params
        return kwargs

    def execute(self, request: Request, signer: Signer | None = None) -> RawResponse:
        """
        Perform exactly one exchange.

        Args:
            request: Request from ``request.build_request``.
            signer: Adds the authentication headers.

        Returns:
            ``RawResponse`` with body, status and headers, or with ``error``
            set on connection-level failure.
        """
        kwargs = self.prepare(request, signer)
        logger.debug("%s %s", request.method, request.url)
        try:
            response = self.session.request(timeout=self.timeout, **kwargs)
        except (requests.RequestException, OSError) as exc:
            error = categorize_exception(exc)
            logger.warning("%s %s failed: %s", request.method, request.url, error)
            return RawResponse(error=error)

        return RawResponse(
            body=response.text,
            status_code=response.status_code,
            headers=_response_headers(response),
        )

    def open_stream(
        self,
        request: Request,
        signer: Signer | None = None,
    ) -> tuple[StreamConnection | None, RawResponse | None]:
        """
        Open a long-lived streaming connection.

        Returns:
            Tuple of (connection, None) on success, or (None, failed
            ``RawResponse``) when the connection cannot be established.
        """
        kwargs = self.prepare(request, signer)
        logger.debug("opening stream %s %s", request.method, request.url)
        try:
            response = self.session.request(
                stream=True,
                timeout=(STREAM_CONNECT_TIMEOUT_SECONDS, STREAM_STALL_SECONDS),
                **kwargs,
            )
        except (requests.RequestException, OSError) as exc:
            error = categorize_exception(exc)
            logger.warning("stream %s failed to open: %s", request.url, error)
            return None, RawResponse(error=error)
        return StreamConnection(response), None
