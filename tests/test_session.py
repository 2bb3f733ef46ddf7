"""Tests for the connection session read/dispatch loop and keepalive."""

from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from fakes import FakeConnection, delayed_ok, make_forwarder, request_envelope

from relay_agent.client.keepalive import KeepaliveHandler
from relay_agent.client.session import ConnectionSession
from relay_agent.core.exceptions import ReadTimeoutError, SessionError
from relay_agent.protocol.envelope import Envelope, encode_envelope


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, stream=httpx.ByteStream(b"ok"))


class TestKeepaliveHandler:
    """Protocol-level ping handling."""

    @pytest.mark.asyncio
    async def test_ping_produces_exactly_one_pong(self):
        conn = FakeConnection()
        handler = KeepaliveHandler()

        pong = await handler.handle_ping(conn, Envelope(type="ping", app_id="app_1"))

        assert pong == Envelope(type="pong")
        assert len(conn.sent) == 1
        assert json.loads(conn.sent[0]) == {"type": "pong"}
        assert handler.pings_answered == 1

    @pytest.mark.asyncio
    async def test_pong_write_failure_propagates(self):
        conn = FakeConnection(fail_send=True)
        with pytest.raises(SessionError):
            await KeepaliveHandler().handle_ping(conn, Envelope(type="ping"))


class TestSessionDispatch:
    """Frame dispatch within one session."""

    @pytest.mark.asyncio
    async def test_ping_is_answered_and_loop_continues(self):
        conn = FakeConnection()
        conn.push(Envelope(type="ping"))
        conn.push(request_envelope("r1", "/"))
        session = ConnectionSession(conn, make_forwarder(ok_handler))

        with pytest.raises(SessionError):
            await session.run()

        sent = conn.sent_envelopes
        assert [env.type for env in sent] == ["pong", "response"]
        assert sent[1].req_id == "r1"
        assert session.stats["pings_answered"] == 1
        assert session.stats["requests_handled"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_frames_are_discarded(self):
        """Responses, pongs, unknown kinds and garbage are skipped and counted."""
        conn = FakeConnection(
            [
                encode_envelope(Envelope.response(req_id="x", status=200)),
                encode_envelope(Envelope.pong()),
                b'{"type": "replay", "req_id": "y"}',
                b"this is not json",
                "[]",
                encode_envelope(request_envelope("r1", "/")),
            ]
        )
        session = ConnectionSession(conn, make_forwarder(ok_handler))

        with pytest.raises(SessionError):
            await session.run()

        assert session.frames_discarded == 5
        assert session.frames_received == 6
        assert [env.req_id for env in conn.sent_envelopes] == ["r1"]

    @pytest.mark.asyncio
    async def test_read_failure_ends_session(self):
        conn = FakeConnection([SessionError("Read failed: connection reset")])
        session = ConnectionSession(conn, make_forwarder(ok_handler))

        with pytest.raises(SessionError, match="connection reset"):
            await session.run()
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_write_failure_ends_session(self):
        conn = FakeConnection(fail_send=True)
        conn.push(request_envelope("r1", "/"))
        conn.push(request_envelope("r2", "/"))
        session = ConnectionSession(conn, make_forwarder(ok_handler))

        with pytest.raises(SessionError, match="Write failed"):
            await session.run()
        # r2 was never read
        assert len(conn.inbound) == 1

    @pytest.mark.asyncio
    async def test_local_failure_does_not_end_session(self):
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        conn = FakeConnection()
        conn.push(request_envelope("r1", "/"))
        conn.push(Envelope(type="ping"))
        session = ConnectionSession(conn, make_forwarder(refused))

        with pytest.raises(SessionError, match="closed"):
            await session.run()

        sent = conn.sent_envelopes
        assert sent[0].status == 502
        assert sent[0].req_id == "r1"
        assert sent[1].type == "pong"


class TestIdleTimeout:
    """Expired read windows are not fatal."""

    @pytest.mark.asyncio
    async def test_frame_after_idle_window_is_processed(self):
        conn = FakeConnection([None, None])
        conn.push(request_envelope("late", "/"))
        session = ConnectionSession(conn, make_forwarder(ok_handler), read_deadline=60.0)

        with pytest.raises(SessionError):
            await session.run()

        assert session.idle_timeouts == 2
        assert [env.req_id for env in conn.sent_envelopes] == ["late"]
        # every read, including those after a timeout, gets a fresh window
        assert conn.timeouts == [60.0, 60.0, 60.0, 60.0]

    @pytest.mark.asyncio
    async def test_real_timer_window_expiry(self):
        """A frame arriving after the window elapsed is still handled."""
        frames: asyncio.Queue[bytes] = asyncio.Queue()

        class QueueConnection(FakeConnection):
            async def recv(self, timeout=None):
                self.timeouts.append(timeout)
                try:
                    return await asyncio.wait_for(frames.get(), timeout)
                except TimeoutError:
                    raise ReadTimeoutError("idle") from None

        conn = QueueConnection()
        session = ConnectionSession(conn, make_forwarder(ok_handler), read_deadline=0.02)
        task = asyncio.create_task(session.run())

        await asyncio.sleep(0.1)
        assert not task.done()
        frames.put_nowait(encode_envelope(request_envelope("after-idle", "/")))
        for _ in range(100):
            if conn.sent:
                break
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.idle_timeouts >= 2
        assert [env.req_id for env in conn.sent_envelopes] == ["after-idle"]


class TestOrdering:
    """Responses leave in the order requests arrived."""

    @pytest.mark.asyncio
    async def test_responses_follow_arrival_order(self):
        delays = {"/1": 0.15, "/2": 0.05, "/3": 0.0}
        completed: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            response = await delayed_ok(request, delays[request.url.path])
            completed.append(request.url.path)
            return response

        conn = FakeConnection()
        for req_id in ("1", "2", "3"):
            conn.push(request_envelope(req_id, f"/{req_id}"))
        session = ConnectionSession(conn, make_forwarder(handler))

        start = time.monotonic()
        with pytest.raises(SessionError):
            await session.run()
        elapsed = time.monotonic() - start

        sent = conn.sent_envelopes
        assert [env.req_id for env in sent] == ["1", "2", "3"]
        assert [env.body for env in sent] == [b"/1", b"/2", b"/3"]
        # strictly serial: each local call starts after the previous finished
        assert completed == ["/1", "/2", "/3"]
        assert elapsed >= 0.2
