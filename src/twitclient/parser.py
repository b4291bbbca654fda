"""
Response decoding: headers, JSON bodies, API-level error detection.

No I/O occurs here; all functions are pure transformations of strings and
dicts into tagged values and ``CallResult`` records, to support easy unit
testing.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from urllib.parse import parse_qsl

from .errors import CallError, ErrorKind
from .objects import OBJECTS, CallResult, ErrorObject, Headers, ObjectType, tag

# Type forced onto any top-level object that carries an ``errors`` field
ERROR_TYPE = "error"


def parse_headers(raw: Mapping[str, str] | Iterable[str] | None) -> Headers:
    """
    Build a ``Headers`` object from a mapping or from raw header lines.

    Raw lines look like ``"Content-Type: application/json\\r\\n"``; a line
    without a colon (``"HTTP/1.1 200 OK"``) is kept as the status line.

    Args:
        raw: Header mapping, list of raw lines, or ``None``.

    Returns:
        Case-insensitive ``Headers``.
    """
    if raw is None:
        return Headers()
    if isinstance(raw, Mapping):
        return Headers(raw)

    headers = Headers()
    for line in raw:
        line = line.rstrip("\r\n")
        name, sep, value = line.partition(": ")
        if not sep:
            if line:
                headers.status_line = line
            continue
        headers[name] = value
    return headers


def decode_json(text: str | bytes) -> tuple[object, CallError | None]:
    """
    Decode a JSON document.

    Returns:
        Tuple of (decoded value or None, ``DECODE`` error or None).
    """
    try:
        return json.loads(text), None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return None, CallError(ErrorKind.DECODE, "invalid JSON in response body", detail=str(exc))


def effective_type(value: object, type_name: str | None) -> str | None:
    """Declared type, or ``error`` when ``value`` is an error body."""
    if isinstance(value, Mapping) and "errors" in value:
        return ERROR_TYPE
    return type_name


def parse_json(
    text: str | bytes,
    type_name: str | None = None,
    catalog: Mapping[str, ObjectType] = OBJECTS,
) -> tuple[object, CallError | None]:
    """
    Decode a JSON string and apply type tags.

    A top-level object with an ``errors`` field is tagged as ``error``
    whatever ``type_name`` says, so one decoding path serves both success
    and error bodies.

    Args:
        text: JSON document.
        type_name: Declared result type; ``None`` skips tagging of
                   non-error bodies.
        catalog: Object catalog used for tagging.

    Returns:
        Tuple of (tagged value, ``DECODE`` error or None).

    Raises:
        CatalogError: ``type_name`` (or a declared subtype) is not in the catalog.
    """
    value, error = decode_json(text)
    if error is not None:
        return None, error
    type_name = effective_type(value, type_name)
    if type_name is not None and value is not None:
        value = tag(value, type_name, catalog)
    return value, None


def api_error_from(value: ErrorObject, status_code: int | None = None) -> CallError:
    """Build an ``API`` error from a tagged error body."""
    code = value.code if value.code is not None else status_code
    return CallError(ErrorKind.API, value.message, code=code)


def decode_response(
    body: str | None,
    status_code: int | None,
    headers: Headers | None,
    type_name: str | None,
    catalog: Mapping[str, ObjectType] = OBJECTS,
) -> CallResult:
    """
    Turn one completed HTTP exchange into a ``CallResult``.

    - Undecodable bodies yield a ``DECODE`` error.
    - Error bodies yield an ``API`` error; the ``ErrorObject`` stays in
      ``raw_value`` next to the headers (rate-limit data is never lost).
    - Other non-2xx statuses with a JSON body yield an ``API`` error with the
      HTTP status as code.

    Args:
        body: Response body text.
        status_code: HTTP status.
        headers: Parsed response headers.
        type_name: Declared result type of the endpoint.
        catalog: Object catalog.

    Returns:
        ``CallResult`` with either a tagged ``value`` or an ``error``.
    """
    result = CallResult(status_code=status_code, headers=headers, type_name=type_name)
    if body is None or body == "":
        if status_code is not None and status_code >= 400:
            result.error = CallError(ErrorKind.API, f"HTTP {status_code}", code=status_code)
        else:
            result.error = CallError(ErrorKind.DECODE, "empty response body", code=status_code)
        return result

    value, error = parse_json(body, type_name, catalog)
    if error is not None:
        result.error = CallError(error.kind, error.message, code=status_code, detail=error.detail)
        return result

    if isinstance(value, ErrorObject):
        result.raw_value = value
        result.error = api_error_from(value, status_code)
        return result

    if status_code is not None and status_code >= 400:
        result.raw_value = value
        result.error = CallError(ErrorKind.API, f"HTTP {status_code}", code=status_code)
        return result

    result.value = value
    return result


def parse_form_encoded(text: str) -> dict[str, str]:
    """Parse an ``application/x-www-form-urlencoded`` body (OAuth token replies)."""
    return dict(parse_qsl(text or "", keep_blank_values=True))
