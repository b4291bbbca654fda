"""
Endpoint catalog: the declarative table the client builds its calls from.

Each entry names one remote operation: HTTP method, path template (with
``:name`` tokens), argument rules, declared result type, and flags for
multipart bodies and streaming connections.  The catalog is read-only after
import.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .config import DEFAULT_ARGS, STREAM_URL, UPLOAD_URL, USER_STREAM_URL
from .errors import CatalogError
from .validation import ArgRules, build_rules

GET, POST, DELETE = "GET", "POST", "DELETE"
METHODS = frozenset({GET, POST, DELETE})


@dataclass(frozen=True)
class Endpoint:
    """One declared remote operation."""

    name: str
    method: str
    path: str
    rules: ArgRules = field(default_factory=ArgRules)
    result_type: str | None = None
    multipart: bool = False
    default_args: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    stream: bool = False
    base_url: str | None = None

    def __repr__(self) -> str:
        return f"<Endpoint {self.name}: {self.method} {self.path}>"


def endpoint(
    method: str,
    path: str,
    args: Mapping[str, object] | None = None,
    result_type: str | None = None,
    multipart: bool = False,
    stream: bool = False,
    base_url: str | None = None,
    default_args: Mapping[str, object] | None = None,
    name: str = "",
) -> Endpoint:
    """
    Declare an endpoint.

    Args:
        method: ``GET``, ``POST`` or ``DELETE``.
        path: Path template relative to the base URL, without the format
              suffix (``"statuses/show/:id"``).
        args: Argument declaration (see ``validation.build_rules``).
        result_type: Object catalog type of a successful response.
        multipart: Send the body as ``multipart/form-data``.
        stream: Long-lived connection delivering a record stream.
        base_url: Host prefix overriding the client's base URL.
        default_args: Default-argument overlay; ``config.DEFAULT_ARGS`` when
                      omitted.

    Raises:
        CatalogError: Malformed declaration.
    """
    if method not in METHODS:
        raise CatalogError(f"{name or path}: invalid HTTP method {method!r}")
    if not isinstance(path, str) or not path:
        raise CatalogError(f"{name or method}: endpoint path must be a non-empty string")
    defaults = DEFAULT_ARGS if default_args is None else default_args
    return Endpoint(
        name=name,
        method=method,
        path=path,
        rules=build_rules(args),
        result_type=result_type,
        multipart=multipart,
        default_args=MappingProxyType(dict(defaults)),
        stream=stream,
        base_url=base_url,
    )


def validate_endpoint(name: str, decl) -> Endpoint:
    """
    Check the shape of one catalog entry and return it as an ``Endpoint``.

    ``decl`` may be an ``Endpoint`` or a mapping of ``endpoint()`` keyword
    arguments (``method`` and ``path`` are required).

    Raises:
        CatalogError: Missing method or path, or an unsupported entry type.
    """
    if isinstance(decl, Endpoint):
        if decl.method not in METHODS or not decl.path:
            raise CatalogError(f"{name}: endpoint must declare a method and a path")
        return decl if decl.name == name else dataclasses.replace(decl, name=name)
    if isinstance(decl, Mapping):
        if not decl.get("method") or not decl.get("path"):
            raise CatalogError(f"{name}: endpoint must declare a method and a path")
        return endpoint(**{**decl, "name": name})
    raise CatalogError(f"{name}: invalid endpoint declaration {type(decl).__name__}")


def _catalog(**entries: Endpoint) -> Mapping[str, Endpoint]:
    return MappingProxyType({
        name: dataclasses.replace(decl, name=name) for name, decl in entries.items()
    })


# ---------------------------------------------------------------------------
# Shared argument groups
# ---------------------------------------------------------------------------

_TIMELINE = {
    "count": "integer",
    "since_id": "string",
    "max_id": "string",
    "trim_user": "boolean",
    "include_entities": "boolean",
}

_USER_SELECTOR = {
    "user_id": "string",
    "screen_name": "string",
}

_LIST_SELECTOR = {
    "list_id": "string",
    "slug": "string",
    "owner_screen_name": "string",
    "owner_id": "string",
}

_USER_CURSOR = {
    **_USER_SELECTOR,
    "cursor": "string",
    "count": "integer",
    "skip_status": "boolean",
    "include_user_entities": "boolean",
}

_ID_CURSOR = {
    **_USER_SELECTOR,
    "cursor": "string",
    "count": "integer",
    "stringify_ids": "boolean",
}

_STREAM_OPTIONS = {
    "delimited": "string",
    "stall_warnings": "boolean",
}


RESOURCES: Mapping[str, Endpoint] = _catalog(
    # Timelines
    get_mentions=endpoint(GET, "statuses/mentions_timeline", {
        **_TIMELINE,
        "contributor_details": "boolean",
    }, "tweet_list"),
    get_user_timeline=endpoint(GET, "statuses/user_timeline", {
        **_USER_SELECTOR,
        **_TIMELINE,
        "exclude_replies": "boolean",
        "contributor_details": "boolean",
        "include_rts": "boolean",
    }, "tweet_list"),
    get_home_timeline=endpoint(GET, "statuses/home_timeline", {
        **_TIMELINE,
        "exclude_replies": "boolean",
        "contributor_details": "boolean",
    }, "tweet_list"),
    get_retweets_of_me=endpoint(GET, "statuses/retweets_of_me", {
        **_TIMELINE,
        "include_user_entities": "boolean",
    }, "tweet_list"),

    # Tweets
    get_retweets=endpoint(GET, "statuses/retweets/:id", {
        "id": {"required": True, "type": "string"},
        "count": "integer",
        "trim_user": "boolean",
    }, "tweet_list"),
    get_tweet=endpoint(GET, "statuses/show/:id", {
        "id": {"required": True, "type": "string"},
        "trim_user": "boolean",
        "include_my_retweet": "boolean",
        "include_entities": "boolean",
    }, "tweet"),
    delete_tweet=endpoint(POST, "statuses/destroy/:id", {
        "id": {"required": True, "type": "string"},
        "trim_user": "boolean",
    }, "tweet"),
    tweet=endpoint(POST, "statuses/update", {
        "status": {"required": True, "type": "string"},
        "in_reply_to_status_id": "string",
        "possibly_sensitive": "boolean",
        "lat": "real",
        "long": "real",
        "place_id": "string",
        "display_coordinates": "boolean",
        "trim_user": "boolean",
        "media_ids": "integer_list",
    }, "tweet"),
    retweet=endpoint(POST, "statuses/retweet/:id", {
        "id": {"required": True, "type": "string"},
        "trim_user": "boolean",
    }, "tweet"),
    oembed=endpoint(GET, "statuses/oembed", {
        "id": {"required": True, "type": "string"},
        "maxwidth": "integer",
        "hide_media": "boolean",
        "hide_thread": "boolean",
        "omit_script": "boolean",
        "align": "string",
        "related": "string_list",
        "lang": "string",
    }, "oembed"),
    get_retweeter_ids=endpoint(GET, "statuses/retweeters/ids", {
        "id": {"required": True, "type": "string"},
        "cursor": "string",
        "stringify_ids": "boolean",
    }, "userid_cursor"),
    tweet_with_media=endpoint(POST, "statuses/update_with_media", {
        "status": {"required": True, "type": "string"},
        "media[]": {"required": True, "type": "file"},
        "possibly_sensitive": "boolean",
        "in_reply_to_status_id": "string",
        "lat": "real",
        "long": "real",
        "place_id": "string",
        "display_coordinates": "boolean",
    }, "tweet", multipart=True),
    lookup_tweets=endpoint(GET, "statuses/lookup", {
        "id": {"required": True, "type": "integer_list"},
        "include_entities": "boolean",
        "trim_user": "boolean",
        "map": "boolean",
    }, "tweet_list"),

    # Media
    upload_media=endpoint(POST, "media/upload", {
        "media": "file",
        "media_data": "base64",
    }, "media", multipart=True, base_url=UPLOAD_URL),

    # Search
    search_tweets=endpoint(GET, "search/tweets", {
        "q": {"required": True, "type": "string"},
        "geocode": "string",
        "lang": "string",
        "locale": "string",
        "result_type": "string",
        "count": "integer",
        "until": "date",
        "since_id": "string",
        "max_id": "string",
        "include_entities": "boolean",
    }, "tweet_search"),

    # Direct messages
    get_received_dms=endpoint(GET, "direct_messages", {
        "since_id": "string",
        "max_id": "string",
        "count": "integer",
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "dm_list"),
    get_sent_dms=endpoint(GET, "direct_messages/sent", {
        "since_id": "string",
        "max_id": "string",
        "count": "integer",
        "page": "integer",
        "include_entities": "boolean",
    }, "dm_list"),
    get_dm=endpoint(GET, "direct_messages/show", {
        "id": {"required": True, "type": "string"},
    }, "dm"),
    delete_dm=endpoint(POST, "direct_messages/destroy", {
        "id": {"required": True, "type": "string"},
        "include_entities": "boolean",
    }, "dm"),
    send_dm=endpoint(POST, "direct_messages/new", {
        **_USER_SELECTOR,
        "text": {"required": True, "type": "string"},
    }, "dm"),

    # Friends and followers
    get_following_ids=endpoint(GET, "friends/ids", _ID_CURSOR, "userid_cursor"),
    get_followers_ids=endpoint(GET, "followers/ids", _ID_CURSOR, "userid_cursor"),
    get_following=endpoint(GET, "friends/list", _USER_CURSOR, "user_cursor"),
    get_followers=endpoint(GET, "followers/list", _USER_CURSOR, "user_cursor"),
    lookup_friendships=endpoint(GET, "friendships/lookup", {
        "screen_name": "string_list",
        "user_id": "integer_list",
    }, "friendship_list"),
    get_friendship=endpoint(GET, "friendships/show", {
        "source_id": "string",
        "source_screen_name": "string",
        "target_id": "string",
        "target_screen_name": "string",
    }, "relationship_container"),
    follow=endpoint(POST, "friendships/create", {
        **_USER_SELECTOR,
        "follow": "boolean",
    }, "user"),
    unfollow=endpoint(POST, "friendships/destroy", _USER_SELECTOR, "user"),

    # Users and account
    verify_credentials=endpoint(GET, "account/verify_credentials", {
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "user"),
    get_account_settings=endpoint(GET, "account/settings", None, "account_settings"),
    update_profile=endpoint(POST, "account/update_profile", {
        "name": "string",
        "url": "string",
        "location": "string",
        "description": "string",
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "user"),
    set_profile_image=endpoint(POST, "account/update_profile_image", {
        "image": {"required": True, "type": "base64"},
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "user"),
    get_user=endpoint(GET, "users/show", {
        **_USER_SELECTOR,
        "include_entities": "boolean",
    }, "user"),
    lookup_users=endpoint(GET, "users/lookup", {
        "screen_name": "string_list",
        "user_id": "integer_list",
        "include_entities": "boolean",
    }, "user_list"),
    search_users=endpoint(GET, "users/search", {
        "q": {"required": True, "type": "string"},
        "page": "integer",
        "count": "integer",
        "include_entities": "boolean",
    }, "user_list"),
    get_profile_banner=endpoint(GET, "users/profile_banner", _USER_SELECTOR, "profile_banner"),
    get_suggestion_category=endpoint(GET, "users/suggestions/:slug", {
        "slug": {"required": True, "type": "string"},
        "lang": "string",
    }, "suggestion_category"),
    get_blocked_users=endpoint(GET, "blocks/list", {
        "include_entities": "boolean",
        "skip_status": "boolean",
        "cursor": "string",
    }, "user_cursor"),
    block_user=endpoint(POST, "blocks/create", {
        **_USER_SELECTOR,
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "user"),

    # Favorites
    get_favorites=endpoint(GET, "favorites/list", {
        **_USER_SELECTOR,
        "count": "integer",
        "since_id": "string",
        "max_id": "string",
        "include_entities": "boolean",
    }, "tweet_list"),
    set_favorite=endpoint(POST, "favorites/create", {
        "id": {"required": True, "type": "string"},
        "include_entities": "boolean",
    }, "tweet"),
    unset_favorite=endpoint(POST, "favorites/destroy", {
        "id": {"required": True, "type": "string"},
        "include_entities": "boolean",
    }, "tweet"),

    # Lists
    get_all_lists=endpoint(GET, "lists/list", {
        **_USER_SELECTOR,
        "reverse": "boolean",
    }, "userlist_list"),
    get_list=endpoint(GET, "lists/show", _LIST_SELECTOR, "userlist"),
    get_list_timeline=endpoint(GET, "lists/statuses", {
        **_LIST_SELECTOR,
        "since_id": "string",
        "max_id": "string",
        "count": "integer",
        "include_entities": "boolean",
        "include_rts": "boolean",
    }, "tweet_list"),
    get_list_members=endpoint(GET, "lists/members", {
        **_LIST_SELECTOR,
        "count": "integer",
        "cursor": "string",
        "include_entities": "boolean",
        "skip_status": "boolean",
    }, "user_cursor"),
    get_own_lists=endpoint(GET, "lists/ownerships", {
        **_USER_SELECTOR,
        "count": "integer",
        "cursor": "string",
    }, "userlist_cursor"),
    create_list=endpoint(POST, "lists/create", {
        "name": {"required": True, "type": "string"},
        "mode": "string",
        "description": "string",
    }, "userlist"),
    add_multiple_list_members=endpoint(POST, "lists/members/create_all", {
        **_LIST_SELECTOR,
        "user_id": "integer_list",
        "screen_name": "string_list",
    }, "userlist"),

    # Saved searches, places, trends
    get_saved_searches=endpoint(GET, "saved_searches/list", None, "saved_search_list"),
    delete_saved_search=endpoint(POST, "saved_searches/destroy/:id", {
        "id": {"required": True, "type": "string"},
    }, "saved_search"),
    get_place=endpoint(GET, "geo/id/:place_id", {
        "place_id": {"required": True, "type": "string"},
    }, "place"),
    search_places=endpoint(GET, "geo/search", {
        "lat": "real",
        "long": "real",
        "query": "string",
        "ip": "string",
        "granularity": "string",
        "accuracy": "string",
        "max_results": "integer",
    }, "place_search"),
    get_trends=endpoint(GET, "trends/place", {
        "id": {"required": True, "type": "integer"},
        "exclude": "string",
    }, "trends_list"),
    get_all_trends_locations=endpoint(GET, "trends/available", None, "trend_location_list"),

    # Service info
    get_service_config=endpoint(GET, "help/configuration", None, "service_config"),
    get_languages=endpoint(GET, "help/languages", None, "language_list"),
    get_rate_limit=endpoint(GET, "application/rate_limit_status", {
        "resources": "string_list",
    }, "rate_limit_status"),

    # Streaming
    stream_filter=endpoint(POST, "statuses/filter", {
        **_STREAM_OPTIONS,
        "follow": "integer_list",
        "track": "string_list",
        "locations": "string_list",
    }, stream=True, base_url=STREAM_URL),
    stream_sample=endpoint(GET, "statuses/sample", _STREAM_OPTIONS, stream=True, base_url=STREAM_URL),
    stream_user=endpoint(GET, "user", {
        **_STREAM_OPTIONS,
        "with": "string",
        "replies": "string",
        "track": "string_list",
        "locations": "string_list",
        "stringify_friend_ids": "boolean",
    }, stream=True, base_url=USER_STREAM_URL),
)
