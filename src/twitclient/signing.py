"""
Request signing collaborators and credential loading.

A signer turns ``(method, url, params)`` into the extra headers that
authenticate one request.  The transport calls it right before sending, so
the same request object can be signed again on a refetch.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import time
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from .config import CREDENTIAL_ENV, OAUTH_KEY_NAMES
from .validation import build_rules

# Keys accepted by the client constructor
OAUTH_KEY_RULES = build_rules({
    "consumer_key": {"required": True, "type": "string"},
    "consumer_secret": {"required": True, "type": "string"},
    "oauth_token": "string",
    "oauth_token_secret": "string",
})


class Signer(Protocol):
    def sign(
        self,
        method: str,
        url: str,
        params: Mapping[str, str],
        oauth_params: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        ...


def _quote(value: str) -> str:
    # RFC 3986 unreserved characters only
    return quote(str(value), safe="~-._")


def _base_url(url: str) -> tuple[str, list[tuple[str, str]]]:
    """Split ``url`` into the normalized base URL and its query pairs."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    base = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))
    return base, query


class OAuth1Signer:
    """
    OAuth 1.0a signer (HMAC-SHA1), producing an ``Authorization`` header.

    Only form/query parameters take part in the signature; callers pass an
    empty mapping for multipart bodies.
    """

    signature_method = "HMAC-SHA1"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        token: str | None = None,
        token_secret: str | None = None,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        if not consumer_key or not consumer_secret:
            raise ValueError("OAuth1Signer requires consumer_key and consumer_secret")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.token = token
        self.token_secret = token_secret
        self._clock = clock
        self._nonce_factory = nonce_factory

    @classmethod
    def from_keys(cls, keys: Mapping[str, str | None]) -> OAuth1Signer:
        return cls(
            keys.get("consumer_key"),
            keys.get("consumer_secret"),
            keys.get("oauth_token"),
            keys.get("oauth_token_secret"),
        )

    def with_token(self, token: str | None, token_secret: str | None) -> OAuth1Signer:
        """Copy of this signer using another user token."""
        return OAuth1Signer(
            self.consumer_key,
            self.consumer_secret,
            token,
            token_secret,
            clock=self._clock,
            nonce_factory=self._nonce_factory,
        )

    def signature(self, method: str, url: str, params: list[tuple[str, str]]) -> str:
        base, query = _base_url(url)
        pairs = sorted((_quote(k), _quote(v)) for k, v in [*query, *params])
        normalized = "&".join(f"{k}={v}" for k, v in pairs)
        base_string = "&".join((method.upper(), _quote(base), _quote(normalized)))
        key = f"{_quote(self.consumer_secret)}&{_quote(self.token_secret or '')}"
        digest = hmac.new(key.encode(), base_string.encode(), hashlib.sha1).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign(
        self,
        method: str,
        url: str,
        params: Mapping[str, str],
        oauth_params: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        oauth = {
            "oauth_consumer_key": self.consumer_key,
            "oauth_nonce": self._nonce_factory(),
            "oauth_signature_method": self.signature_method,
            "oauth_timestamp": str(int(self._clock())),
            "oauth_version": "1.0",
        }
        if self.token:
            oauth["oauth_token"] = self.token
        oauth.update(oauth_params or {})

        all_params = [(k, str(v)) for k, v in params.items()] + list(oauth.items())
        oauth["oauth_signature"] = self.signature(method, url, all_params)

        header = ", ".join(f'{_quote(k)}="{_quote(v)}"' for k, v in sorted(oauth.items()))
        return {"Authorization": f"OAuth {header}"}


class BearerSigner:
    """Application-only authentication with a bearer token."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("BearerSigner requires a token")
        self.token = token

    def sign(self, method, url, params, oauth_params=None) -> dict[str, str]:  # noqa: ARG002
        return {"Authorization": f"Bearer {self.token}"}


# ---------------------------------------------------------------------------
# Credential loading
# ---------------------------------------------------------------------------

def read_config(path: str | Path) -> dict[str, str]:
    """
    Read a simple ``key = value`` config file.  Lines starting with ``#`` are
    comments.

    Raises:
        ValueError: A non-comment line is not a ``key = value`` pair.
    """
    config: dict[str, str] = {}
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    for n, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"error parsing config at line {n}: {path}")
        config[key.strip()] = value.strip().strip('"')
    return config


def load_keys(*sources: Mapping[str, str] | str | Path | None, env: bool = True) -> dict[str, str]:
    """
    Collect OAuth keys from environment variables, files and mappings.

    Environment variables (see ``config.CREDENTIAL_ENV``) are read first;
    each source then overrides the keys it defines, in order.

    Args:
        *sources: Mappings, paths of ``key = value`` files, or ``None``.
        env: Read the environment variables.

    Returns:
        Dict with the OAuth keys found (missing ones are absent).

    Raises:
        TypeError: A source has an unsupported type.
    """
    keys: dict[str, str] = {}
    if env:
        for name, var in CREDENTIAL_ENV.items():
            value = os.getenv(var)
            if value:
                keys[name] = value

    for i, source in enumerate(sources, start=1):
        if source is None:
            continue
        if isinstance(source, (str, Path)):
            source = read_config(source)
        elif not isinstance(source, Mapping):
            raise TypeError(f"argument #{i}: invalid type {type(source).__name__}")
        for name in OAUTH_KEY_NAMES:
            value = source.get(name)
            if value is not None:
                keys[name] = value
    return keys
