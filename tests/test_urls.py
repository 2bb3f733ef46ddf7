"""Tests for relay and target URL helpers."""

from __future__ import annotations

import pytest

from relay_agent.core.urls import (
    access_url,
    build_target_url,
    join_path,
    parse_server,
    relay_dial_url,
    target_base_url,
)


class TestJoinPath:
    """Exactly one slash between the two halves."""

    @pytest.mark.parametrize("base", ["/bar", "/bar/", "/bar//"])
    @pytest.mark.parametrize("path", ["foo", "/foo", "//foo"])
    def test_slash_combinations(self, base, path):
        assert join_path(base, path) == "/bar/foo"

    def test_empty_base(self):
        assert join_path("", "/foo") == "/foo"
        assert join_path("", "foo") == "/foo"

    def test_empty_path(self):
        assert join_path("/bar", "") == "/bar/"
        assert join_path("", "") == "/"

    def test_nested_path_is_kept(self):
        assert join_path("/api/", "/v1/items/") == "/api/v1/items/"


class TestBuildTargetUrl:
    """Resolving forwarded paths against the local target."""

    def test_root_target(self):
        assert build_target_url("http://127.0.0.1:8082", "/foo") == "http://127.0.0.1:8082/foo"

    @pytest.mark.parametrize("base", ["http://127.0.0.1:8082/bar", "http://127.0.0.1:8082/bar/"])
    @pytest.mark.parametrize("path", ["/foo", "foo"])
    def test_base_with_path(self, base, path):
        assert build_target_url(base, path) == "http://127.0.0.1:8082/bar/foo"

    def test_query_string_is_preserved(self):
        url = build_target_url("http://127.0.0.1:8082", "/search?q=relay&page=2")
        assert url == "http://127.0.0.1:8082/search?q=relay&page=2"


class TestRelayUrls:
    """Dial and access URLs derived from the server address."""

    def test_http_server_dials_ws(self):
        url = relay_dial_url("http://relay.example.com:8080", "app_1")
        assert url == "ws://relay.example.com:8080/platform/plugin_relay/app?app_id=app_1"

    def test_https_server_dials_wss(self):
        url = relay_dial_url("https://relay.example.com", "app_1")
        assert url == "wss://relay.example.com/platform/plugin_relay/app?app_id=app_1"

    def test_other_scheme_dials_wss(self):
        url = relay_dial_url("ftp://relay.example.com", "app_1")
        assert url.startswith("wss://relay.example.com/")

    def test_bare_host_is_treated_as_https(self):
        assert parse_server("relay.example.com") == ("https", "relay.example.com")
        assert relay_dial_url("relay.example.com", "a").startswith("wss://relay.example.com/")

    def test_app_id_is_url_encoded(self):
        url = relay_dial_url("https://relay.example.com", "my app&x=1")
        assert url.endswith("?app_id=my+app%26x%3D1")

    def test_server_path_is_ignored(self):
        url = relay_dial_url("https://relay.example.com/some/path", "a")
        assert url == "wss://relay.example.com/platform/plugin_relay/app?app_id=a"

    def test_access_url(self):
        url = access_url("https://relay.example.com", "app_F63GRnbJR6xINLyK")
        assert url == "https://relay.example.com/platform/plugin_relay/app_dispatch/app_F63GRnbJR6xINLyK"

    def test_access_url_keeps_http(self):
        assert access_url("http://10.0.0.5:9000", "a") == (
            "http://10.0.0.5:9000/platform/plugin_relay/app_dispatch/a"
        )

    def test_invalid_server(self):
        with pytest.raises(ValueError):
            parse_server("http://")

    def test_target_base_url(self):
        assert target_base_url(8082) == "http://127.0.0.1:8082"
        assert target_base_url("3000") == "http://127.0.0.1:3000"
