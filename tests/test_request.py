"""
Unit tests for twitclient/request.py.

Covers path-token substitution (consumed keys, missing-token errors),
default overlay, wire encoding of booleans, multipart body layout, and the
per-endpoint base URL override.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from requests.utils import requote_uri

from twitclient.config import BASE_URL
from twitclient.errors import CatalogError
from twitclient.request import (
    Attachment,
    attach_file,
    build_request,
    encode_value,
    merge_args,
    substitute_path,
)


def _endpoint(path, method="GET", multipart=False, stream=False, base_url=None):
    return SimpleNamespace(
        method=method, path=path, multipart=multipart, stream=stream, base_url=base_url
    )


class TestSubstitutePath:
    def test_token_replaced_and_consumed(self):
        values = {"id": "42", "foo": "bar"}
        assert substitute_path("users/:id", values) == "users/42"
        assert values == {"foo": "bar"}

    def test_missing_token_names_it(self):
        with pytest.raises(CatalogError, match=":id"):
            substitute_path("users/:id", {"foo": "bar"})

    def test_several_tokens(self):
        values = {"slug": "team", "id": 7}
        assert substitute_path("lists/:slug/members/:id", values) == "lists/team/members/7"
        assert values == {}

    def test_reserved_characters_encoded(self):
        values = {"slug": "a b/c?d", "id": "x~y-z._1"}
        path = substitute_path("lists/:slug/members/:id", values)
        assert path == "lists/a%20b%2Fc%3Fd/members/x~y-z._1"

    def test_url_not_requoted_by_requests(self):
        req = build_request(_endpoint("users/suggestions/:slug"), {"slug": "news & media/tv"})
        assert req.url.endswith("users/suggestions/news%20%26%20media%2Ftv.json")
        assert requote_uri(req.url) == req.url


class TestBuildRequest:
    def test_url_and_residual_params(self):
        req = build_request(_endpoint("users/:id"), {"id": "42", "foo": "bar"})
        assert req.url.endswith("users/42.json")
        assert req.url.startswith(BASE_URL)
        assert req.params == {"foo": "bar"}

    def test_missing_token_raises(self):
        with pytest.raises(CatalogError, match="id"):
            build_request(_endpoint("users/:id"), {"foo": "bar"})

    def test_defaults_overlaid_by_args(self):
        req = build_request(
            _endpoint("friends/ids"),
            {"stringify_ids": False, "cursor": "-1"},
            defaults={"stringify_ids": True, "count": 5000},
        )
        assert req.params == {"stringify_ids": "false", "cursor": "-1", "count": "5000"}

    def test_internal_options_not_sent(self):
        req = build_request(_endpoint("statuses/home_timeline"), {"count": 5, "_async": True})
        assert req.params == {"count": "5"}

    def test_input_args_not_mutated(self):
        args = {"id": "42"}
        build_request(_endpoint("statuses/show/:id"), args)
        assert args == {"id": "42"}

    def test_endpoint_base_url_wins(self):
        req = build_request(
            _endpoint("statuses/sample", stream=True, base_url="https://stream.example/1.1/"),
            {},
        )
        assert req.url == "https://stream.example/1.1/statuses/sample.json"
        assert req.stream is True

    def test_multipart_splits_files(self):
        image = Attachment("cat.png", b"\x89PNG", "image/png")
        req = build_request(
            _endpoint("statuses/update_with_media", method="POST", multipart=True),
            {"status": "look", "media[]": image, "possibly_sensitive": False},
        )
        assert req.multipart
        assert req.files == {"media[]": ("cat.png", b"\x89PNG", "image/png")}
        assert req.params == {"status": "look", "possibly_sensitive": "false"}

    def test_plain_request_has_no_files(self):
        req = build_request(_endpoint("statuses/update", method="POST"), {"status": "hi"})
        assert req.files is None
        assert not req.multipart
        assert req.sends_body

    def test_get_and_delete_do_not_send_body(self):
        assert not build_request(_endpoint("a"), {}).sends_body
        assert not build_request(_endpoint("a", method="DELETE"), {}).sends_body


class TestHelpers:
    def test_encode_value(self):
        assert encode_value(True) == "true"
        assert encode_value(False) == "false"
        assert encode_value(12) == "12"

    def test_merge_args_skips_internal(self):
        assert merge_args({"a": 1, "_raw": True}, {"b": 2}) == {"a": 1, "b": 2}

    def test_attach_file(self, tmp_path):
        path = tmp_path / "avatar.png"
        path.write_bytes(b"\x89PNG\r\n")
        att = attach_file(path)
        assert att.filename == "avatar.png"
        assert att.data == b"\x89PNG\r\n"
        assert att.content_type == "image/png"
