"""Protocol-level keepalive."""

from __future__ import annotations

import structlog

from relay_agent.client.transport import Connection
from relay_agent.protocol.envelope import Envelope, encode_envelope

logger = structlog.get_logger()


class KeepaliveHandler:
    """Answers ping envelopes with a pong on the same connection."""

    def __init__(self) -> None:
        self.pings_answered = 0

    async def handle_ping(self, connection: Connection, ping: Envelope) -> Envelope:
        """Write exactly one pong for ``ping`` and return it.

        Raises:
            SessionError: If the pong could not be written.
        """
        logger.debug("Received ping", app_id=ping.app_id or None)
        pong = Envelope.pong()
        await connection.send(encode_envelope(pong))
        self.pings_answered += 1
        return pong
