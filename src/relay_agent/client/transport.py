"""WebSocket connection to the relay."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Protocol

import aiohttp
import structlog
from aiohttp import WSMsgType

from relay_agent.core.exceptions import DialError, ReadTimeoutError, SessionError

logger = structlog.get_logger()


class Connection(Protocol):
    """What a session needs from a tunnel connection."""

    async def recv(self, timeout: float | None = None) -> bytes | str:
        """Return the next data frame.

        Raises:
            ReadTimeoutError: No frame arrived within ``timeout``.
            SessionError: The connection is closed or broken.
        """
        ...

    async def send(self, data: bytes) -> None:
        """Write one data frame. Raises SessionError on failure."""
        ...

    async def close(self) -> None: ...


class RelayConnection:
    """An open WebSocket to the relay.

    Transport-level pings are answered here, inside ``recv``, so the session
    only ever sees data frames. Envelopes are written as text frames.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        pong_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._ws = ws
        self._pong_timeout = pong_timeout
        self.pings_answered = 0

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def recv(self, timeout: float | None = None) -> bytes | str:
        while True:
            try:
                msg = await self._ws.receive(timeout=timeout)
            except TimeoutError as e:
                raise ReadTimeoutError(f"No frame within {timeout}s") from e
            except aiohttp.ClientError as e:
                raise SessionError(f"Read failed: {e}") from e

            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                return msg.data
            if msg.type == WSMsgType.PING:
                await self._answer_ping(msg.data)
                continue
            if msg.type == WSMsgType.PONG:
                continue
            if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                raise SessionError(f"Connection closed by relay (code={self._ws.close_code})")
            if msg.type == WSMsgType.ERROR:
                raise SessionError(f"Read failed: {self._ws.exception()}")
            raise SessionError(f"Unexpected WebSocket message type: {msg.type!r}")

    async def _answer_ping(self, payload: bytes) -> None:
        # A lost pong is not fatal; a dead connection shows up on the next read.
        try:
            await asyncio.wait_for(self._ws.pong(payload or b""), self._pong_timeout)
            self.pings_answered += 1
        except (TimeoutError, ConnectionError, aiohttp.ClientError) as e:
            logger.warning("Failed to answer transport ping", error=str(e))

    async def send(self, data: bytes) -> None:
        try:
            await self._ws.send_str(data.decode("utf-8"))
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            raise SessionError(f"Write failed: {e}") from e

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._ws.close()
        await self._session.close()


async def dial_relay(
    url: str,
    headers: dict[str, str],
    connect_timeout: float = 30.0,
    max_msg_size: int = 64 * 1024 * 1024,
    pong_timeout: float = 10.0,
) -> RelayConnection:
    """Open the tunnel WebSocket.

    Raises:
        DialError: If the handshake fails for any reason.
    """
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=None, connect=connect_timeout),
    )
    try:
        ws = await session.ws_connect(
            url,
            headers=headers,
            autoping=False,
            heartbeat=None,
            max_msg_size=max_msg_size,
        )
    except (aiohttp.ClientError, OSError, TimeoutError) as e:
        await session.close()
        raise DialError(url, str(e) or type(e).__name__) from e
    except BaseException:
        await session.close()
        raise
    return RelayConnection(session, ws, pong_timeout=pong_timeout)
