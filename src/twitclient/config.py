"""
API configuration, transport parameters, and credential environment names.

All constants used across the client modules are centralized here so that
configuration is separated from the request/response pipeline.

Note: the REST base URL and the streaming hosts are the v1.1 endpoints.  An
endpoint declaration may carry its own base URL (streaming endpoints do),
which takes precedence over ``BASE_URL``.
"""

from __future__ import annotations

import requests

# ---------------------------------------------------------------------------
# API endpoints
# ---------------------------------------------------------------------------

# Base URL of the REST API; resource paths are joined onto it.
BASE_URL = "https://api.twitter.com/1.1/"

# Format extension appended to every resource path.
URL_SUFFIX = ".json"

# Streaming hosts (one per stream family)
STREAM_URL = "https://stream.twitter.com/1.1/"
USER_STREAM_URL = "https://userstream.twitter.com/1.1/"
SITE_STREAM_URL = "https://sitestream.twitter.com/1.1/"

# Media uploads go to a separate host
UPLOAD_URL = "https://upload.twitter.com/1.1/"

# OAuth 1.0a endpoints used by the PIN-based (out-of-band) login flow.
OAUTH_ENDPOINTS: dict[str, str] = {
    "request_token": "https://api.twitter.com/oauth/request_token",
    "authorize": "https://api.twitter.com/oauth/authorize",
    "access_token": "https://api.twitter.com/oauth/access_token",
}

# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------

# Argument names starting with this prefix are flow-control options for the
# dispatcher (``_async``, ``_raw``, ``_callback``), never API parameters.
INTERNAL_PREFIX = "_"

# Default-argument overlay shared by every endpoint.  Each endpoint keeps only
# the keys its own rule set recognizes.
DEFAULT_ARGS: dict[str, object] = {
    "stringify_ids": True,
}

# ---------------------------------------------------------------------------
# Transport parameters
# ---------------------------------------------------------------------------

REQUEST_TIMEOUT_SECONDS: int = 60   # connect + read timeout for one exchange
STREAM_CONNECT_TIMEOUT_SECONDS: int = 30
STREAM_STALL_SECONDS: int = 90      # a stream with no bytes for this long is dead
STREAM_CHUNK_SIZE: int | None = None  # None: hand over chunks as they arrive

USER_AGENT = f"twitclient/0.4.0 python-requests/{requests.__version__}"

# ---------------------------------------------------------------------------
# Async execution engine
# ---------------------------------------------------------------------------

ASYNC_WORKER_COUNT: int = 1         # persistent background workers per engine
ENGINE_POLL_SECONDS: float = 1.0    # max block while waiting for completions
ENGINE_JOIN_TIMEOUT_SECONDS: float = 5.0

# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

# OAuth key names, in the order they are passed to the signer.
OAUTH_KEY_NAMES: tuple[str, ...] = (
    "consumer_key",
    "consumer_secret",
    "oauth_token",
    "oauth_token_secret",
)

# Environment variables consulted by ``signing.load_keys``.
CREDENTIAL_ENV: dict[str, str] = {
    "consumer_key": "TWITTER_CONSUMER_KEY",
    "consumer_secret": "TWITTER_CONSUMER_SECRET",
    "oauth_token": "TWITTER_OAUTH_TOKEN",
    "oauth_token_secret": "TWITTER_OAUTH_TOKEN_SECRET",
}

# ---------------------------------------------------------------------------
# Caller-level retry schedule (see retry.py)
# ---------------------------------------------------------------------------

RETRY_MAX_ATTEMPTS: int = 3
RETRY_BACKOFF_SECONDS: dict[int, int] = {1: 10, 2: 30, 3: 90}
RETRY_MAX_WAIT_SECONDS: int = 900   # cap for waits derived from rate-limit resets
