"""
twitclient — typed client for the Twitter REST API v1.1.

Module layout
-------------
config.py      — base URLs, OAuth endpoints, timeouts, worker count, credential env names
errors.py      — ErrorKind, CallError, CatalogError, exception categorization
validation.py  — argument rule sets and value coercion
request.py     — request construction, path-token substitution, attachments
objects.py     — object catalog, type tagging, Cursor / ErrorObject / AccessToken / Headers
parser.py      — header and JSON decoding, API error detection
signing.py     — OAuth 1.0a and bearer signers, credential loading
transport.py   — one-shot exchanges and streaming connections over requests
engine.py      — worker pool, futures, completion channel
stream.py      — stream record framing and the StreamHandle
resources.py   — endpoint catalog
client.py      — Client orchestrator
retry.py       — caller-level retry with backoff

Public interface
----------------
Make calls:
    client = Client(load_keys("keys.cfg"))
    result = client.get_home_timeline(count=20)
    future = client.get_user(screen_name="x", _async=True)

Walk a cursored collection:
    for page in client.get_followers(screen_name="x").value.pages(): ...

Read a stream:
    stream = client.stream_user()
    while stream.is_active():
        for record in stream: ...
        stream.wait(1.0)
"""

import logging

from .client import Client, EndpointCall
from .engine import AsyncEngine, Future
from .errors import CallError, CatalogError, ErrorKind
from .objects import (
    OBJECTS,
    AccessToken,
    CallContext,
    CallResult,
    Cursor,
    ErrorObject,
    Headers,
    TaggedDict,
    TaggedList,
    id_cmp,
    id_lt,
    tag,
    type_of,
)
from .request import Attachment, attach_file
from .resources import RESOURCES, Endpoint, endpoint
from .retry import call_with_retry
from .signing import BearerSigner, OAuth1Signer, load_keys
from .stream import StreamHandle

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.4.0"

__all__ = [
    # Client
    "Client",
    "EndpointCall",
    "call_with_retry",
    # Async
    "AsyncEngine",
    "Future",
    "StreamHandle",
    # Results and tagged objects
    "CallResult",
    "CallError",
    "CallContext",
    "ErrorKind",
    "CatalogError",
    "TaggedDict",
    "TaggedList",
    "Cursor",
    "ErrorObject",
    "AccessToken",
    "Headers",
    "tag",
    "type_of",
    "id_cmp",
    "id_lt",
    # Catalogs
    "RESOURCES",
    "OBJECTS",
    "Endpoint",
    "endpoint",
    # Credentials and uploads
    "OAuth1Signer",
    "BearerSigner",
    "load_keys",
    "Attachment",
    "attach_file",
]
