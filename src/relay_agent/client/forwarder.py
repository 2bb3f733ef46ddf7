"""Translation between request envelopes and calls to the local service."""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from relay_agent.core.urls import build_target_url
from relay_agent.protocol.envelope import Envelope

logger = structlog.get_logger()

ERROR_HEADER = "X-Agent-Error"
ERROR_BODY = b"agent request error"
BAD_GATEWAY = 502


def create_http_client(
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client used to reach the local service.

    Redirects are returned to the caller rather than followed, and the client
    sends none of httpx's default request headers so that forwarded requests
    carry exactly the headers of the envelope.
    """
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=False,
        transport=transport,
    )
    client.headers.clear()
    return client


def clone_headers(headers: httpx.Headers) -> dict[str, list[str]]:
    """Copy response headers into an envelope header map.

    Header names keep the casing the local service sent and repeated headers
    keep every value in order.
    """
    out: dict[str, list[str]] = {}
    for raw_key, raw_value in headers.raw:
        key = raw_key.decode(headers.encoding)
        out.setdefault(key, []).append(raw_value.decode(headers.encoding))
    return out


def error_response(req_id: str, error: BaseException) -> Envelope:
    """Build the 502 envelope reported when the local call fails."""
    description = str(error) or type(error).__name__
    return Envelope.response(
        req_id=req_id,
        status=BAD_GATEWAY,
        headers={ERROR_HEADER: [description]},
        body=ERROR_BODY,
    )


class RequestForwarder:
    """Forwards request envelopes to the local service.

    ``forward`` never raises for request-level failures; they are reported to
    the relay as a 502 response envelope instead.
    """

    def __init__(
        self,
        target_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.target_url = target_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.requests_forwarded = 0
        self.requests_failed = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self.timeout)
        return self._client

    async def forward(self, request: Envelope) -> Envelope:
        return await forward(self.client, self.target_url, request, timeout=self.timeout, stats=self)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def forward(
    client: httpx.AsyncClient,
    target_url: str,
    request: Envelope,
    timeout: float = 10.0,
    stats: RequestForwarder | None = None,
) -> Envelope:
    """Perform ``request`` against the local service rooted at ``target_url``.

    Args:
        client: HTTP client for the local service
        target_url: Base URL of the local service
        request: A request envelope
        timeout: Total time allowed for the round trip, body included
        stats: Forwarder whose counters are updated

    Returns:
        A response envelope carrying ``request.req_id``.
    """
    url = build_target_url(target_url, request.path)
    # Host is taken from the target URL, never from the relayed request.
    headers = [
        (name.encode("utf-8"), value.encode("utf-8"))
        for name, values in request.headers.items()
        if name.lower() != "host"
        for value in values
    ]
    start = time.monotonic()

    try:
        async with asyncio.timeout(timeout):
            async with client.stream(
                request.method,
                url,
                headers=headers,
                content=request.body,
            ) as resp:
                # aiter_raw skips content decoding so the body passes through untouched
                body = b"".join([chunk async for chunk in resp.aiter_raw()])
    except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as e:
        logger.warning(
            "Local request failed",
            req_id=request.req_id,
            method=request.method,
            path=request.path,
            error=str(e) or type(e).__name__,
        )
        if stats is not None:
            stats.requests_failed += 1
        return error_response(request.req_id, e)
    except (ValueError, TypeError) as e:
        # Requests httpx refuses to build, such as a bad method token.
        logger.warning(
            "Invalid local request",
            req_id=request.req_id,
            method=request.method,
            path=request.path,
            error=str(e),
        )
        if stats is not None:
            stats.requests_failed += 1
        return error_response(request.req_id, e)

    if stats is not None:
        stats.requests_forwarded += 1
    logger.debug(
        "Forwarded request",
        req_id=request.req_id,
        method=request.method,
        path=request.path,
        status=resp.status_code,
        bytes=len(body),
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return Envelope.response(
        req_id=request.req_id,
        status=resp.status_code,
        headers=clone_headers(resp.headers),
        body=body,
    )
