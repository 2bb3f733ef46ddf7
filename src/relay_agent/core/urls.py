"""URL helpers for the relay endpoint and the local target."""

from __future__ import annotations

import urllib.parse

RELAY_PATH = "/platform/plugin_relay/app"
DISPATCH_PATH = "/platform/plugin_relay/app_dispatch"
LOCAL_HOST = "127.0.0.1"


def parse_server(server: str) -> tuple[str, str]:
    """Split a server address into ``(scheme, host)``.

    A bare host such as ``relay.example.com:8443`` has no scheme and is
    treated as ``https``.
    """
    server = server.strip()
    if "://" not in server:
        server = f"https://{server}"
    parsed = urllib.parse.urlsplit(server)
    if not parsed.netloc:
        raise ValueError(f"Invalid server address: {server!r}")
    return parsed.scheme.lower(), parsed.netloc


def relay_dial_url(server: str, app_id: str) -> str:
    """Build the WebSocket URL the agent dials.

    ``http`` servers are dialed over ``ws``, everything else over ``wss``.
    """
    scheme, host = parse_server(server)
    ws_scheme = "ws" if scheme == "http" else "wss"
    query = urllib.parse.urlencode({"app_id": app_id})
    return f"{ws_scheme}://{host}{RELAY_PATH}?{query}"


def access_url(server: str, app_id: str) -> str:
    """Build the public URL through which the relay dispatches to this agent."""
    scheme, host = parse_server(server)
    return f"{scheme}://{host}{DISPATCH_PATH}/{app_id}"


def target_base_url(port: int | str) -> str:
    return f"http://{LOCAL_HOST}:{port}"


def join_path(base: str, path: str) -> str:
    """Join two URL paths with exactly one slash between them.

    >>> join_path("/bar/", "/foo")
    '/bar/foo'
    >>> join_path("", "foo")
    '/foo'
    """
    return base.rstrip("/") + "/" + path.lstrip("/")


def build_target_url(base_url: str, path: str) -> str:
    """Resolve a forwarded request path against the local target base URL.

    The path component of ``base_url`` is joined with ``path``. A query string
    carried on ``path`` is kept as the query of the resulting URL.
    """
    path, sep, query = path.partition("?")
    parsed = urllib.parse.urlsplit(base_url)
    joined = join_path(parsed.path, path)
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, joined, query if sep else parsed.query, "")
    )
