"""Outer connect/retry loop keeping one tunnel connection alive."""

from __future__ import annotations

import asyncio
import contextlib
import functools
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from relay_agent.client.forwarder import RequestForwarder
from relay_agent.client.keepalive import KeepaliveHandler
from relay_agent.client.session import ConnectionSession
from relay_agent.client.transport import Connection, dial_relay
from relay_agent.core.config import AgentConfig, PerformanceConfig, TimeoutConfig
from relay_agent.core.exceptions import SessionError, format_error_for_user

logger = structlog.get_logger()

DialFunc = Callable[[], Awaitable[Connection]]
SleepFunc = Callable[[float], Awaitable[None]]
SessionFactory = Callable[[Connection], ConnectionSession]


class ConnectionState(Enum):
    """Connection manager state."""

    DISCONNECTED = "disconnected"
    DIALING = "dialing"
    CONNECTED = "connected"


class ConnectionManager:
    """Dials the relay, runs a session until it ends, and dials again, forever.

    Dial failures are retried after ``dial_retry_delay`` and finished sessions
    after ``reconnect_delay``; neither delay grows and there is no attempt
    limit. Every successful dial gets a new ``ConnectionSession``; nothing
    carries over from the previous connection.

    The dial function, sleep function and session factory can be injected so
    the state machine runs without network I/O or real timers.
    """

    def __init__(
        self,
        config: AgentConfig,
        timeouts: TimeoutConfig | None = None,
        performance: PerformanceConfig | None = None,
        forwarder: RequestForwarder | None = None,
        dial: DialFunc | None = None,
        sleep: SleepFunc = asyncio.sleep,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.config = config
        self.timeouts = timeouts or TimeoutConfig()
        performance = performance or PerformanceConfig()
        self.forwarder = forwarder or RequestForwarder(
            config.target_url, timeout=self.timeouts.request_timeout
        )
        self._dial = dial or functools.partial(
            dial_relay,
            config.relay_url,
            config.auth_headers,
            connect_timeout=self.timeouts.connect_timeout,
            max_msg_size=performance.ws_max_size,
            pong_timeout=self.timeouts.pong_write_timeout,
        )
        self._sleep = sleep
        self._session_factory = session_factory or self._new_session

        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._session: ConnectionSession | None = None
        self._state_hooks: list[Callable[[ConnectionState], None]] = []

        self._dial_attempts = 0
        self._dial_failures = 0
        self._sessions = 0
        self._session_totals: dict[str, int] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def session(self) -> ConnectionSession | None:
        """The session currently running, if any."""
        return self._session

    @property
    def stats(self) -> dict[str, Any]:
        """Connection statistics, including counters of finished sessions."""
        return {
            "state": self._state.value,
            "dial_attempts": self._dial_attempts,
            "dial_failures": self._dial_failures,
            "sessions": self._sessions,
            **self._session_totals,
        }

    def add_state_hook(self, hook: Callable[[ConnectionState], None]) -> None:
        """Add a hook to be called on state changes."""
        self._state_hooks.append(hook)

    def remove_state_hook(self, hook: Callable[[ConnectionState], None]) -> None:
        if hook in self._state_hooks:
            self._state_hooks.remove(hook)

    def _set_state(self, state: ConnectionState) -> None:
        """Set state and notify hooks."""
        if self._state != state:
            old_state = self._state
            self._state = state
            logger.debug("State changed", old=old_state.value, new=state.value)
            for hook in self._state_hooks:
                try:
                    hook(state)
                except Exception as e:
                    logger.warning("State hook error", error=str(e))

    def _new_session(self, connection: Connection) -> ConnectionSession:
        return ConnectionSession(
            connection,
            self.forwarder,
            read_deadline=self.timeouts.read_deadline,
            keepalive=KeepaliveHandler(),
        )

    def _announce(self) -> None:
        logger.info(
            "You can use the access URL to reach the target service",
            access_url=self.config.access_url,
            target=self.config.target_url,
        )

    def stop(self) -> None:
        """Ask the loop to exit after the current step."""
        self._running = False

    async def run(self) -> None:
        """Keep the tunnel up until cancelled or stopped."""
        self._running = True
        logger.info("Dialing relay", url=self.config.relay_url)
        self._announce()
        try:
            while self._running:
                await self.step()
        finally:
            self._set_state(ConnectionState.DISCONNECTED)
            await self.forwarder.aclose()

    async def step(self) -> None:
        """Run one dial attempt and, if it succeeds, one session."""
        self._set_state(ConnectionState.DIALING)
        self._dial_attempts += 1
        try:
            connection = await self._dial()
        except Exception as e:
            self._dial_failures += 1
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(
                "Dial failed, retrying",
                error=format_error_for_user(e),
                attempt=self._dial_attempts,
                delay_sec=self.timeouts.dial_retry_delay,
            )
            await self._sleep(self.timeouts.dial_retry_delay)
            return

        self._set_state(ConnectionState.CONNECTED)
        logger.info("Dialed relay", url=self.config.relay_url)
        self._announce()

        session = self._session_factory(connection)
        self._session = session
        try:
            await session.run()
        except SessionError as e:
            logger.warning(
                "Session ended, reconnecting",
                error=e.message,
                delay_sec=self.timeouts.reconnect_delay,
            )
        except Exception as e:
            logger.error(
                "Session failed, reconnecting",
                error=format_error_for_user(e),
                delay_sec=self.timeouts.reconnect_delay,
            )
        finally:
            self._session = None
            self._sessions += 1
            for key, value in session.stats.items():
                self._session_totals[key] = self._session_totals.get(key, 0) + value
            with contextlib.suppress(Exception):
                await connection.close()

        self._set_state(ConnectionState.DISCONNECTED)
        await self._sleep(self.timeouts.reconnect_delay)
