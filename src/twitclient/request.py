"""
Request construction: defaults overlay, path-token substitution, body layout.

Pure transformations only; nothing here performs I/O except ``attach_file``,
which reads a local file into an ``Attachment`` for multipart uploads.
"""

from __future__ import annotations

import mimetypes
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from .config import BASE_URL, INTERNAL_PREFIX, URL_SUFFIX
from .errors import CatalogError

# ``:name`` placeholders in resource paths
_PATH_TOKEN_RE = re.compile(r":(\w+)")


@dataclass(frozen=True)
class Attachment:
    """A file prepared for a multipart request."""

    filename: str
    data: bytes
    content_type: str = "application/octet-stream"

    def __repr__(self) -> str:
        return f"Attachment({self.filename!r}, {len(self.data)} bytes)"


def attach_file(path: str | Path) -> Attachment:
    """
    Load a file and prepare it for a multipart request.

    Args:
        path: File to be read.

    Returns:
        ``Attachment`` with the base name of ``path`` and its raw bytes.

    Raises:
        OSError: The file cannot be read.
    """
    path = Path(path)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return Attachment(filename=path.name, data=path.read_bytes(), content_type=content_type)


@dataclass
class Request:
    """
    One concrete HTTP request, built fresh per call.

    ``params`` holds the form/query parameters.  For multipart requests the
    plain fields stay in ``params`` and file parts go to ``files``.
    """

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    files: dict[str, tuple[str, bytes, str]] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    stream: bool = False

    @property
    def multipart(self) -> bool:
        return self.files is not None

    @property
    def sends_body(self) -> bool:
        return self.method.upper() not in ("GET", "HEAD", "DELETE")


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def encode_value(value: object) -> str:
    """Wire form of a coerced scalar (booleans become ``true``/``false``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_path(template: str, values: dict[str, object]) -> str:
    """
    Replace every ``:name`` token of ``template`` with its value.

    Values are percent-encoded (RFC 3986 unreserved characters kept), so
    the URL is sent exactly as it is signed.  Each matched key is removed
    from ``values`` so it is not sent again as a parameter.

    Raises:
        CatalogError: A token has no corresponding value.
    """
    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            raise CatalogError(f"invalid token ':{key}' in resource URL '{template}'")
        return quote(encode_value(values.pop(key)), safe="~-._")

    return _PATH_TOKEN_RE.sub(_replace, template)


def merge_args(
    args: Mapping[str, object],
    defaults: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Overlay non-internal ``args`` onto a copy of ``defaults``."""
    merged = dict(defaults or {})
    for key, value in args.items():
        if not key.startswith(INTERNAL_PREFIX):
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------

def build_request(
    endpoint,
    args: Mapping[str, object],
    defaults: Mapping[str, object] | None = None,
    base_url: str = BASE_URL,
) -> Request:
    """
    Turn an endpoint declaration and validated arguments into a ``Request``.

    Args:
        endpoint: Declaration with ``method``, ``path``, ``multipart``,
                  ``stream`` and optional ``base_url`` attributes.
        args: Validated (coerced) arguments.  Internal options are ignored.
        defaults: Default arguments, overwritten by ``args`` on conflict.
        base_url: Used when the endpoint carries no base URL of its own.

    Returns:
        ``Request`` with the substituted URL and the residual parameters.

    Raises:
        CatalogError: A path token has no value.
    """
    merged = merge_args(args, defaults)
    path = substitute_path(endpoint.path, merged)
    url = (getattr(endpoint, "base_url", None) or base_url) + path + URL_SUFFIX

    params: dict[str, str] = {}
    files: dict[str, tuple[str, bytes, str]] | None = None

    if endpoint.multipart:
        files = {}
        for key, value in merged.items():
            if isinstance(value, Attachment):
                files[key] = (value.filename, value.data, value.content_type)
            else:
                params[key] = encode_value(value)
    else:
        params = {key: encode_value(value) for key, value in merged.items()}

    return Request(
        method=endpoint.method,
        url=url,
        params=params,
        files=files,
        stream=bool(getattr(endpoint, "stream", False)),
    )
