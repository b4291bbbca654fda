"""
Object catalog, type tagging, and the tagged result object model.

Decoded JSON values are re-typed into a closed set of variants:

- ``TaggedDict`` / ``TaggedList`` — any structured value, carrying a
  ``type_name`` and (for top-level results) a ``CallContext``.
- ``Cursor``      — paginated listings with ``next()`` / ``previous()``.
- ``ErrorObject`` — API-level error bodies (``{"errors": [...]}``).
- ``AccessToken`` — result of the OAuth login flow, with ``save()``.
- ``Headers``     — case-insensitive response headers.

The variant is selected by the ``kind`` of the ``ObjectType`` entry; the
behaviour of each variant lives on its class, never on the data.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from requests.structures import CaseInsensitiveDict

from .errors import CallError, CatalogError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Call results
# ---------------------------------------------------------------------------

@dataclass
class CallResult:
    """
    Outcome of one API call.

    Exactly one of ``value`` / ``error`` is meaningful: ``ok`` is ``True`` when
    ``error`` is ``None``.  For API-level errors ``raw_value`` keeps the tagged
    ``ErrorObject`` that the server returned.  Unpacks as ``(value, error)``.
    """

    value: Any = None
    error: CallError | None = None
    status_code: int | None = None
    headers: Headers | None = None
    type_name: str | None = None
    raw_value: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __iter__(self) -> Iterator[Any]:
        return iter((self.value, self.error))


# ---------------------------------------------------------------------------
# "Repeat this call" context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallContext:
    """
    Snapshot of the call that produced a result.

    ``args`` is an immutable copy of the merged arguments (defaults plus the
    caller's validated arguments), so later changes to the caller's mapping
    do not leak into a refetch.
    """

    client: Any
    endpoint: str
    args: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def capture(cls, client, endpoint: str, args: Mapping[str, Any]) -> CallContext:
        return cls(client, endpoint, MappingProxyType(dict(args)))

    def refetch(self, overrides: Mapping[str, Any] | None = None, **kwargs):
        """Re-invoke the owning endpoint with ``args`` shallow-merged with overrides."""
        merged = {**self.args, **(overrides or {}), **kwargs}
        return self.client.call(self.endpoint, merged)


# ---------------------------------------------------------------------------
# Tagged variants
# ---------------------------------------------------------------------------

class TaggedDict(dict):
    """JSON object annotated with its domain type.

    Keys are also readable as attributes (``tweet.user.screen_name``).
    """

    kind = "object"

    def __init__(self, *args, type_name: str = "object", **kwargs):
        super().__init__(*args, **kwargs)
        self.type_name = type_name
        self.context: CallContext | None = None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{self.type_name}' object has no field '{name}'") from None

    @property
    def client(self):
        return self.context.client if self.context else None

    def refetch(self, overrides: Mapping[str, Any] | None = None, **kwargs):
        """Repeat the call that produced this object with new arguments."""
        if self.context is None:
            raise ValueError(f"'{self.type_name}' object was not produced by a repeatable call")
        return self.context.refetch(overrides, **kwargs)

    def __repr__(self) -> str:
        return f"<{self.type_name} {dict.__repr__(self)}>"


class TaggedList(list):
    """JSON array annotated with its domain type."""

    kind = "list"

    def __init__(self, *args, type_name: str = "list"):
        super().__init__(*args)
        self.type_name = type_name
        self.context: CallContext | None = None

    @property
    def client(self):
        return self.context.client if self.context else None

    def refetch(self, overrides: Mapping[str, Any] | None = None, **kwargs):
        if self.context is None:
            raise ValueError(f"'{self.type_name}' list was not produced by a repeatable call")
        return self.context.refetch(overrides, **kwargs)

    def __repr__(self) -> str:
        return f"<{self.type_name} {list.__repr__(self)}>"


class Cursor(TaggedDict):
    """
    A page of a cursored collection.

    ``next_cursor`` / ``previous_cursor`` hold the page markers; ``0`` in
    either direction means there is no further page.
    """

    kind = "cursor"

    def _marker(self, direction: str):
        marker = self.get(f"{direction}_cursor_str") or self.get(f"{direction}_cursor")
        if marker in (None, 0, "0", ""):
            return None
        return marker

    @property
    def has_next(self) -> bool:
        return self._marker("next") is not None

    @property
    def has_previous(self) -> bool:
        return self._marker("previous") is not None

    def next(self) -> CallResult | None:
        """Fetch the next page, or return ``None`` on the last page."""
        marker = self._marker("next")
        if marker is None:
            return None
        return self.refetch(cursor=marker)

    def previous(self) -> CallResult | None:
        """Fetch the previous page, or return ``None`` on the first page."""
        marker = self._marker("previous")
        if marker is None:
            return None
        return self.refetch(cursor=marker)

    def pages(self) -> Iterator[CallResult]:
        """
        Walk forward through the collection, starting with this page.

        Yields one ``CallResult`` per page.  A failed fetch is yielded too and
        ends the iteration, so the caller always sees the error.
        """
        yield CallResult(value=self, type_name=self.type_name)
        page = self
        while True:
            result = page.next()
            if result is None:
                return
            yield result
            if not result.ok or not isinstance(result.value, Cursor):
                return
            page = result.value


class ErrorObject(TaggedDict):
    """API-level error body: ``{"errors": [{"code": ..., "message": ...}]}``."""

    kind = "error"

    @property
    def errors(self) -> list:
        errors = self.get("errors")
        if isinstance(errors, list):
            return errors
        if isinstance(errors, str):
            return [{"message": errors}]
        return []

    @property
    def code(self) -> int | None:
        for item in self.errors:
            if isinstance(item, Mapping) and item.get("code") is not None:
                return item["code"]
        return None

    @property
    def message(self) -> str:
        for item in self.errors:
            if isinstance(item, Mapping) and item.get("message"):
                return item["message"]
        return self.get("error") or "unknown API error"


class AccessToken(TaggedDict):
    """Keys returned by the OAuth access-token step."""

    kind = "access_token"

    def as_keys(self) -> dict[str, str]:
        return {k: v for k, v in self.items() if k.startswith("oauth")}

    def save(self, path: str | Path) -> AccessToken:
        """
        Save the token into a ``key = value`` file.

        Non-OAuth fields (``user_id``, ``screen_name``) are written commented
        out so that the file can be loaded back with ``signing.load_keys``.
        """
        lines = []
        for key, value in self.items():
            prefix = "" if key.startswith("oauth") else "#"
            lines.append(f"{prefix}{key} = {value}")
        Path(path).write_text("\n".join(lines) + "\n", encoding="utf-8")
        return self


class Headers(CaseInsensitiveDict):
    """HTTP response headers (case-insensitive) plus the status line."""

    type_name = "headers"

    def __init__(self, data=None, status_line: str | None = None, **kwargs):
        super().__init__(data, **kwargs)
        self.status_line = status_line

    @property
    def content_type(self) -> str | None:
        value = self.get("content-type")
        if value:
            return value.split(";", 1)[0].strip()
        return None

    def _int(self, name: str) -> int | None:
        value = self.get(name)
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    @property
    def rate_limit(self) -> dict[str, int | None]:
        """``x-rate-limit-*`` values as integers (``None`` when absent)."""
        return {
            "limit": self._int("x-rate-limit-limit"),
            "remaining": self._int("x-rate-limit-remaining"),
            "reset": self._int("x-rate-limit-reset"),
        }


# ---------------------------------------------------------------------------
# Object catalog
# ---------------------------------------------------------------------------

_KIND_CLASSES: Mapping[str, type[TaggedDict]] = MappingProxyType({
    "object": TaggedDict,
    "cursor": Cursor,
    "error": ErrorObject,
    "access_token": AccessToken,
})


@dataclass(frozen=True)
class ObjectType:
    """
    One entry of the object catalog.

    ``subtypes`` is ``None`` (leaf type), a type name applied to every
    element, or a mapping of field name to type name.
    """

    name: str
    subtypes: str | Mapping[str, str] | None = None
    kind: str = "object"


def _catalog(*types: ObjectType) -> Mapping[str, ObjectType]:
    return MappingProxyType({t.name: t for t in types})


OBJECTS: Mapping[str, ObjectType] = _catalog(
    # Tweets
    ObjectType("tweet", {
        "user": "user",
        "retweeted_status": "tweet",
        "quoted_status": "tweet",
        "entities": "entities",
        "place": "place",
    }),
    ObjectType("tweet_list", "tweet"),
    ObjectType("tweet_search", {"statuses": "tweet_list", "search_metadata": "search_metadata"}),
    ObjectType("search_metadata"),
    ObjectType("entities"),
    ObjectType("oembed"),
    ObjectType("media"),
    # Users
    ObjectType("user", {"status": "tweet", "entities": "entities"}),
    ObjectType("user_list", "user"),
    ObjectType("user_cursor", {"users": "user_list"}, kind="cursor"),
    ObjectType("userid_list"),
    ObjectType("userid_cursor", {"ids": "userid_list"}, kind="cursor"),
    ObjectType("profile_banner"),
    ObjectType("suggestion_category", {"users": "user_list"}),
    ObjectType("suggestion_category_list", "suggestion_category"),
    # Friendships
    ObjectType("relationship"),
    ObjectType("relationship_container", {"relationship": "relationship"}),
    ObjectType("friendship"),
    ObjectType("friendship_list", "friendship"),
    # Lists
    ObjectType("userlist", {"user": "user"}),
    ObjectType("userlist_list", "userlist"),
    ObjectType("userlist_cursor", {"lists": "userlist_list"}, kind="cursor"),
    # Direct messages
    ObjectType("dm", {"sender": "user", "recipient": "user", "entities": "entities"}),
    ObjectType("dm_list", "dm"),
    # Saved searches, places, trends
    ObjectType("saved_search"),
    ObjectType("saved_search_list", "saved_search"),
    ObjectType("place"),
    ObjectType("place_list", "place"),
    ObjectType("place_search", {"result": "place_search_result"}),
    ObjectType("place_search_result", {"places": "place_list"}),
    ObjectType("trends"),
    ObjectType("trends_list", "trends"),
    ObjectType("trend_location"),
    ObjectType("trend_location_list", "trend_location"),
    # Account and service info
    ObjectType("account_settings"),
    ObjectType("rate_limit_status"),
    ObjectType("service_config"),
    ObjectType("language_list"),
    ObjectType("privacy"),
    ObjectType("tos"),
    # Streaming records
    ObjectType("tweet_deleted"),
    ObjectType("stream_event", {"source": "user", "target": "user"}),
    ObjectType("friend_list"),
    ObjectType("stream_limit"),
    ObjectType("stream_disconnect"),
    ObjectType("stream_warning"),
    ObjectType("stream_dm", {"direct_message": "dm"}),
    ObjectType("stream_message"),
    # Auth and errors
    ObjectType("access_token", kind="access_token"),
    ObjectType("error", kind="error"),
    ObjectType("internal_error", kind="error"),
)


# ---------------------------------------------------------------------------
# Tagging
# ---------------------------------------------------------------------------

def _bless(node, decl: ObjectType):
    """Return ``node`` carrying ``decl``'s tag, wrapping it when needed."""
    if isinstance(node, list):
        cls = TaggedList
    else:
        cls = _KIND_CLASSES.get(decl.kind)
        if cls is None:
            raise CatalogError(f"unknown object kind '{decl.kind}' for type '{decl.name}'")

    if isinstance(node, (TaggedDict, TaggedList)):
        if type(node) is cls and node.type_name == decl.name:
            return node
        # A tag is never changed in place: retagging produces a new wrapper.
        tagged = cls(node, type_name=decl.name)
        tagged.context = node.context
        return tagged
    return cls(node, type_name=decl.name)


def tag(node, type_name: str, catalog: Mapping[str, ObjectType] = OBJECTS):
    """
    Apply a type tag to ``node`` and, recursively, to its declared subtypes.

    The whole subtree is tagged before the value is returned.  Scalars and
    ``None`` pass through untouched.

    Args:
        node: Decoded JSON value.
        type_name: Name of an entry of ``catalog``.
        catalog: Object catalog.

    Returns:
        The tagged value (a ``TaggedDict`` / ``TaggedList`` variant for
        structured input, ``node`` itself otherwise).

    Raises:
        CatalogError: Unknown type name or malformed subtype declaration.
    """
    decl = catalog.get(type_name)
    if decl is None:
        raise CatalogError(f"unknown object type '{type_name}'")

    if not isinstance(node, (Mapping, list)):
        return node

    node = _bless(node, decl)
    subtypes = decl.subtypes
    if subtypes is None:
        return node

    if isinstance(subtypes, str):
        if isinstance(node, list):
            for i, item in enumerate(node):
                node[i] = tag(item, subtypes, catalog)
        else:
            for key, item in node.items():
                node[key] = tag(item, subtypes, catalog)
    elif isinstance(subtypes, Mapping):
        if isinstance(node, Mapping):
            for key, sub_name in subtypes.items():
                item = node.get(key)
                if item is not None:
                    node[key] = tag(item, sub_name, catalog)
    else:
        raise CatalogError(
            f"subtype declaration of '{type_name}' must be a type name or a mapping"
        )
    return node


def type_of(value) -> str:
    """Type tag of a tagged value, or the Python type name otherwise."""
    type_name = getattr(value, "type_name", None)
    if isinstance(type_name, str):
        return type_name
    return type(value).__name__


# ---------------------------------------------------------------------------
# String id comparison (id_str fields)
# ---------------------------------------------------------------------------

def id_cmp(a: str, b: str) -> int:
    """Compare two numeric string ids: 0 if equal, 1 if ``a > b``, -1 otherwise."""
    if a == b:
        return 0
    if len(a) != len(b):
        return 1 if len(a) > len(b) else -1
    return 1 if a > b else -1


def id_lt(a: str, b: str) -> bool:
    """``a < b`` for numeric string ids of arbitrary size."""
    return id_cmp(a, b) < 0
