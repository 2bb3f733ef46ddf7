"""Read/dispatch loop over one tunnel connection."""

from __future__ import annotations

from typing import Any

import structlog

from relay_agent.client.forwarder import RequestForwarder
from relay_agent.client.keepalive import KeepaliveHandler
from relay_agent.client.transport import Connection
from relay_agent.core.exceptions import DecodingError, ReadTimeoutError
from relay_agent.protocol.envelope import Envelope, decode_envelope, encode_envelope

logger = structlog.get_logger()


class ConnectionSession:
    """Runs one connection from successful dial until it fails.

    Frames are handled strictly one at a time in arrival order: a request is
    forwarded and its response written before the next frame is read, so
    responses leave in the order their requests arrived.
    """

    def __init__(
        self,
        connection: Connection,
        forwarder: RequestForwarder,
        read_deadline: float = 60.0,
        keepalive: KeepaliveHandler | None = None,
    ) -> None:
        self.connection = connection
        self.forwarder = forwarder
        self.read_deadline = read_deadline
        self.keepalive = keepalive or KeepaliveHandler()

        self.frames_received = 0
        self.frames_discarded = 0
        self.requests_handled = 0
        self.idle_timeouts = 0
        self.bytes_received = 0
        self.bytes_sent = 0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "frames_received": self.frames_received,
            "frames_discarded": self.frames_discarded,
            "requests_handled": self.requests_handled,
            "pings_answered": self.keepalive.pings_answered,
            "idle_timeouts": self.idle_timeouts,
            "bytes_received": self.bytes_received,
            "bytes_sent": self.bytes_sent,
        }

    async def run(self) -> None:
        """Read and dispatch frames until the connection fails.

        Raises:
            SessionError: On any read or write failure other than an idle
                read timeout.
        """
        while True:
            try:
                data = await self.connection.recv(timeout=self.read_deadline)
            except ReadTimeoutError:
                # Idle is not an error; the next recv gets a fresh window.
                self.idle_timeouts += 1
                logger.debug("Read window expired, extending", seconds=self.read_deadline)
                continue

            self.frames_received += 1
            self.bytes_received += len(data)
            await self.handle_frame(data)

    async def handle_frame(self, data: bytes | str) -> None:
        try:
            envelope = decode_envelope(data)
        except DecodingError as e:
            self._discard(None, reason=str(e))
            return

        if envelope.is_ping:
            await self.keepalive.handle_ping(self.connection, envelope)
            return
        if not envelope.is_request:
            self._discard(envelope.type, reason="unexpected message type")
            return

        response = await self.forwarder.forward(envelope)
        await self._send(response)
        self.requests_handled += 1

    async def _send(self, envelope: Envelope) -> None:
        data = encode_envelope(envelope)
        await self.connection.send(data)
        self.bytes_sent += len(data)

    def _discard(self, msg_type: str | None, reason: str) -> None:
        self.frames_discarded += 1
        logger.debug(
            "Discarding frame",
            type=msg_type,
            reason=reason,
            discarded=self.frames_discarded,
        )
