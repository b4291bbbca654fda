"""
API client: the orchestrator tying the pipeline together.

For every call:

1. ``validation.check_args``   — required/unknown names, value coercion
2. ``request.build_request``   — defaults overlay, path tokens, body layout
3. transport (sync) or engine (``_async``), signed by the client's signer
4. ``parser.decode_response``  — JSON decoding, API error detection, tagging

Internal options (names starting with ``_``) steer step 3 and 4:

- ``_async``:    return a ``Future`` immediately; decoding runs when the
                 future resolves.
- ``_raw``:      skip decoding; the result value is the body text and
                 ``type_name`` the declared type (see ``Client.parse_json``).
                 Not accepted by streaming endpoints.
- ``_callback``: function chained onto an async future; its return value
                 becomes the resolved value.  On streaming endpoints it is
                 chained onto the connection future (``StreamHandle.future``).

Streaming endpoints always return a ``StreamHandle``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from functools import partial
from types import MappingProxyType
from typing import Any
from urllib.parse import urlencode

from .config import ASYNC_WORKER_COUNT, BASE_URL, OAUTH_ENDPOINTS
from .engine import AsyncEngine, Future
from .errors import CallError, ErrorKind, validation_error
from .objects import OBJECTS, CallContext, CallResult, ObjectType, TaggedDict, TaggedList, tag
from .parser import decode_response, parse_form_encoded, parse_json
from .request import Request, build_request, merge_args
from .resources import GET, RESOURCES, Endpoint, validate_endpoint
from .signing import OAUTH_KEY_RULES, OAuth1Signer, Signer
from .stream import StreamHandle
from .transport import HttpTransport, RawResponse
from .validation import check_args

logger = logging.getLogger(__name__)


class EndpointCall:
    """
    Compiled call descriptor for one catalog entry.

    ``defaults`` keeps only the default arguments that the endpoint's rules
    recognize.  Calling the descriptor is the same as ``client.call(name, ...)``.
    """

    def __init__(self, client: Client, endpoint: Endpoint):
        self.client = client
        self.endpoint = endpoint
        self.defaults: Mapping[str, object] = MappingProxyType({
            k: v for k, v in endpoint.default_args.items() if k in endpoint.rules
        })

    @property
    def name(self) -> str:
        return self.endpoint.name

    def __call__(self, args: Mapping[str, Any] | None = None, **kwargs):
        return self.client.call(self.name, args, **kwargs)

    def __repr__(self) -> str:
        return f"<EndpointCall {self.name}: {self.endpoint.method} {self.endpoint.path}>"


class Client:
    """
    Typed client of the REST API.

    Args:
        keys: OAuth keys (``consumer_key``, ``consumer_secret`` and, once
              authorized, ``oauth_token``, ``oauth_token_secret``).
        signer: Signer to use instead of one built from ``keys``.
        transport: Transport shared by sync calls and the async engine.
        resources: Endpoint catalog.
        objects: Object catalog.
        base_url: Base URL of endpoints without a host of their own.
        workers: Number of async workers (started on first async call).

    Raises:
        ValueError: ``keys`` fail validation.
    """

    def __init__(
        self,
        keys: Mapping[str, str] | None = None,
        signer: Signer | None = None,
        transport: HttpTransport | None = None,
        resources: Mapping[str, Endpoint] = RESOURCES,
        objects: Mapping[str, ObjectType] = OBJECTS,
        base_url: str = BASE_URL,
        workers: int = ASYNC_WORKER_COUNT,
    ):
        if signer is None and keys is not None:
            checked, error = check_args(OAUTH_KEY_RULES, keys, "Client")
            if error is not None:
                raise ValueError(error.message)
            keys = checked
            signer = OAuth1Signer.from_keys(checked)
        self.keys: dict[str, str] = dict(keys or {})
        self.signer = signer
        self.transport = transport or HttpTransport()
        self.resources = resources
        self.objects = objects
        self.base_url = base_url
        self.workers = workers

        self._calls: dict[str, EndpointCall] = {}
        self._lock = threading.Lock()
        self._engine: AsyncEngine | None = None
        self._request_token: tuple[str, str] | None = None

    def __repr__(self) -> str:
        return f"<Client {self.base_url} endpoints={len(self.resources)}>"

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __getattr__(self, name: str) -> EndpointCall:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.endpoint(name)
        except KeyError:
            raise AttributeError(f"no endpoint named '{name}'") from None

    # -- registry -----------------------------------------------------------

    def endpoint(self, name: str) -> EndpointCall:
        """
        Compiled call descriptor for ``name``, built on first access.

        Raises:
            KeyError: ``name`` is not in the catalog.
            CatalogError: The catalog entry is malformed.
        """
        with self._lock:
            call = self._calls.get(name)
            if call is None:
                decl = self.resources.get(name)
                if decl is None:
                    raise KeyError(f"no endpoint named '{name}'")
                call = EndpointCall(self, validate_endpoint(name, decl))
                self._calls[name] = call
            return call

    @property
    def engine(self) -> AsyncEngine:
        """Async engine of this client, created on first use."""
        with self._lock:
            if self._engine is None:
                self._engine = AsyncEngine(self.transport, self.signer, self.workers)
            return self._engine

    def close(self) -> None:
        """Stop the async workers and release the transport's connections."""
        with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.stop()
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()

    # -- calls --------------------------------------------------------------

    def call(self, name: str, args: Mapping[str, Any] | None = None, **kwargs):
        """
        Invoke the endpoint ``name``.

        Args:
            name: Catalog name of the endpoint.
            args: Argument mapping; ``kwargs`` are merged on top.

        Returns:
            ``CallResult`` (sync), ``Future`` resolving to a ``CallResult``
            (``_async``), or ``StreamHandle`` (streaming endpoints).  Every
            failure except a catalog defect comes back as an error value.

        Raises:
            KeyError: Unknown endpoint.
            CatalogError: Broken catalog entry or missing path token.
        """
        target = self.endpoint(name)
        decl = target.endpoint
        if args is not None and not isinstance(args, Mapping):
            return self._fail(decl, validation_error(f"{name}: arguments must be passed in a mapping"), False)
        args = {**(args or {}), **kwargs}
        is_async = bool(args.get("_async"))

        checked, error = check_args(decl.rules, args, name, target.defaults)
        if error is None:
            callback = checked.get("_callback")
            if callback is not None and not callable(callback):
                error = validation_error(f"{name}: _callback must be callable")
            elif decl.stream and checked.get("_raw"):
                error = validation_error(f"{name}: _raw is not supported on streaming endpoints")
        if error is not None:
            logger.debug("%s", error)
            return self._fail(decl, error, is_async)

        request = build_request(decl, checked, target.defaults, self.base_url)

        if decl.stream:
            delimited = checked.get("delimited") == "length"
            handle = self.engine.open_stream(request, decl.result_type, self.objects, delimited)
            if callback is not None:
                handle.future.map(callback)
            return handle

        context = None
        if decl.method == GET:
            context = CallContext.capture(self, name, merge_args(checked, target.defaults))
        finish = partial(
            self._finish,
            type_name=decl.result_type,
            context=context,
            raw=bool(checked.get("_raw")),
        )

        if is_async:
            future = self.engine.dispatch(request, finish)
            if callback is not None:
                future.map(callback)
            return future
        return finish(self.transport.execute(request, self.signer))

    def _fail(self, decl: Endpoint, error: CallError, is_async: bool):
        result = CallResult(error=error, type_name=decl.result_type)
        if decl.stream:
            handle = StreamHandle(decl.result_type, self.objects)
            handle.future = Future.completed(result)
            handle.finished()
            return handle
        if is_async:
            return Future.completed(result)
        return result

    def _finish(
        self,
        response: RawResponse,
        type_name: str | None,
        context: CallContext | None,
        raw: bool,
    ) -> CallResult:
        if response.error is not None:
            return CallResult(
                error=response.error,
                status_code=response.status_code,
                headers=response.headers,
                type_name=type_name,
            )
        if raw:
            return CallResult(
                value=response.body,
                status_code=response.status_code,
                headers=response.headers,
                type_name=type_name,
            )

        result = decode_response(
            response.body, response.status_code, response.headers, type_name, self.objects
        )
        if result.ok and context is not None and isinstance(result.value, (TaggedDict, TaggedList)):
            result.value.context = context
        return result

    def parse_json(self, text: str, type_name: str | None = None):
        """
        Decode and tag a body obtained with ``_raw``.

        Returns:
            Tuple of (tagged value, ``DECODE`` error or None).
        """
        return parse_json(text, type_name, self.objects)

    # -- OAuth out-of-band login ------------------------------------------

    def _oauth_step(self, step: str, signer: OAuth1Signer, oauth_params: dict) -> CallResult:
        url = OAUTH_ENDPOINTS[step]
        request = Request("POST", url, headers=signer.sign("POST", url, {}, oauth_params))
        response = self.transport.execute(request)
        result = CallResult(status_code=response.status_code, headers=response.headers)
        if response.error is not None:
            result.error = response.error
        elif response.status_code >= 400:
            result.raw_value = response.body
            result.error = CallError(
                ErrorKind.API, f"{step} failed: HTTP {response.status_code}", code=response.status_code
            )
        else:
            result.value = parse_form_encoded(response.body)
        return result

    def start_login(self) -> CallResult:
        """
        Begin the PIN-based authorization.

        Returns:
            ``CallResult`` whose value is the URL the user must visit to get
            the PIN for ``confirm_login``.
        """
        if not isinstance(self.signer, OAuth1Signer):
            return CallResult(error=validation_error("start_login: client has no consumer keys"))
        signer = self.signer.with_token(None, None)
        result = self._oauth_step("request_token", signer, {"oauth_callback": "oob"})
        if not result.ok:
            return result
        token = result.value.get("oauth_token")
        if not token:
            result.error = CallError(ErrorKind.DECODE, "request_token reply has no oauth_token")
            return result
        self._request_token = (token, result.value.get("oauth_token_secret", ""))
        result.value = OAUTH_ENDPOINTS["authorize"] + "?" + urlencode({"oauth_token": token})
        return result

    def confirm_login(self, pin: str | int) -> CallResult:
        """
        Finish the authorization with the PIN shown to the user.

        On success the client switches to the new user token.

        Returns:
            ``CallResult`` whose value is an ``AccessToken``.
        """
        if self._request_token is None:
            return CallResult(error=validation_error("confirm_login: start_login() must be called first"))
        signer = self.signer.with_token(*self._request_token)
        result = self._oauth_step("access_token", signer, {"oauth_verifier": str(pin)})
        if not result.ok:
            return result

        token = tag(result.value, "access_token", self.objects)
        result.value = token
        result.type_name = "access_token"
        self._request_token = None
        self.keys.update(token.as_keys())
        self.signer = self.signer.with_token(token.get("oauth_token"), token.get("oauth_token_secret"))
        with self._lock:
            if self._engine is not None:
                self._engine.signer = self.signer
        logger.debug("Authorized as %s", token.get("screen_name"))
        return result
