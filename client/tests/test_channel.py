"""Tests for the push channel: stream framing, state machine and reconnects."""
import asyncio

import httpx
import pytest

from forumlive.live.channel import ChannelState, PushChannel
from forumlive.live.events import parse_line


class HangingStream(httpx.AsyncByteStream):
    """Response body that sends a comment and then stays open until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.closed = False

    async def __aiter__(self):
        yield b": connected\n\n"
        await self.release.wait()

    async def aclose(self) -> None:
        self.closed = True


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def make_channel(http, scheduler, received=None, active=lambda: True, **kwargs):
    received = received if received is not None else []
    return PushChannel(
        http,
        "u1",
        received.append,
        scheduler,
        session_active=active,
        **kwargs,
    )


# =============================================================================
# Framing
# =============================================================================


class TestParseLine:

    @pytest.mark.parametrize("line", ["", "   ", ": ping", "event: message", "id: 4", "retry: 100", "data:"])
    def test_non_data_lines_are_skipped(self, line):
        assert parse_line(line) is None

    def test_sse_data_line(self):
        assert parse_line('data: {"type": "typing", "roomId": "f1"}') == {"type": "typing", "roomId": "f1"}

    def test_bare_ndjson_line(self):
        assert parse_line('{"type": "message"}\n') == {"type": "message"}

    def test_invalid_json_is_logged(self, caplog):
        assert parse_line("data: {not json") is None
        assert "Failed to parse push message" in caplog.text

    def test_non_object_is_rejected(self):
        assert parse_line("data: [1, 2]") is None


# =============================================================================
# Connection lifecycle
# =============================================================================


class TestPushChannel:

    @pytest.mark.asyncio
    async def test_records_are_delivered_in_order(self, api, fake_service, scheduler):
        fake_service.push("u1", {"type": "message", "roomId": "f1", "message": {"id": "m1", "text": "a"}})
        fake_service.push("u1", {"type": "message", "roomId": "f1", "message": {"id": "m2", "text": "b"}})
        received = []
        channel = make_channel(api.http, scheduler, received)

        channel.connect()
        await scheduler.drain()

        assert [r["message"]["id"] for r in received] == ["m1", "m2"]
        assert fake_service.calls_to("GET", "/api/sse") == [{"userId": "u1"}]

    @pytest.mark.asyncio
    async def test_state_is_open_while_reading(self, api, fake_service, scheduler):
        fake_service.push("u1", {"type": "typing", "roomId": "f1", "userId": "u2"})
        states = []
        channel = PushChannel(
            api.http, "u1", lambda record: states.append(channel.state), scheduler, lambda: True
        )

        assert channel.state == ChannelState.DISCONNECTED
        channel.connect()
        assert channel.state == ChannelState.CONNECTING
        await scheduler.drain()

        assert states == [ChannelState.OPEN]
        assert channel.connection_time is not None

    @pytest.mark.asyncio
    async def test_stream_end_schedules_exactly_one_reconnect(self, api, fake_service, scheduler):
        channel = make_channel(api.http, scheduler)

        channel.connect()
        await scheduler.drain()

        assert channel.state == ChannelState.DISCONNECTED
        assert channel.reconnect_pending
        assert [due for due, _ in scheduler.pending()] == [pytest.approx(5.0)]

        await scheduler.advance(4.9)
        assert fake_service.sse_connects == 1
        await scheduler.advance(0.2)
        assert fake_service.sse_connects == 2
        # The second stream ended as well; again exactly one timer is armed.
        assert len(scheduler.pending()) == 1

    @pytest.mark.asyncio
    async def test_error_status_disconnects_and_reconnects(self, api, fake_service, scheduler):
        fake_service.fail("GET", "/api/sse", status=503)
        received = []
        channel = make_channel(api.http, scheduler, received)

        channel.connect()
        await scheduler.drain()

        assert channel.state == ChannelState.DISCONNECTED
        assert channel.connection_time is None
        assert received == []
        assert channel.reconnect_pending

    @pytest.mark.asyncio
    async def test_transport_error_schedules_reconnect(self, scheduler):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(refuse)) as http:
            channel = make_channel(http, scheduler, reconnect_delay=5.0)
            channel.connect()
            await scheduler.drain()

            assert channel.state == ChannelState.DISCONNECTED
            assert [due for due, _ in scheduler.pending()] == [pytest.approx(5.0)]

    @pytest.mark.asyncio
    async def test_repeated_errors_keep_a_single_timer(self, api, scheduler):
        channel = make_channel(api.http, scheduler)
        channel._on_error()
        channel._on_error()
        channel._on_error()
        assert len(scheduler.pending()) == 1

    @pytest.mark.asyncio
    async def test_no_reconnect_without_session(self, api, fake_service, scheduler):
        channel = make_channel(api.http, scheduler, active=lambda: False)

        channel.connect()
        await scheduler.drain()

        assert channel.state == ChannelState.DISCONNECTED
        assert not channel.reconnect_pending
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_session_checked_again_when_timer_fires(self, api, fake_service, scheduler):
        session = {"active": True}
        channel = make_channel(api.http, scheduler, active=lambda: session["active"])

        channel.connect()
        await scheduler.drain()
        assert channel.reconnect_pending

        session["active"] = False
        await scheduler.advance(5.0)

        assert fake_service.sse_connects == 1
        assert channel.state == ChannelState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_cancels_pending_reconnect(self, api, fake_service, scheduler):
        channel = make_channel(api.http, scheduler)
        channel.connect()
        await scheduler.drain()

        channel.close()
        await scheduler.advance(10.0)

        assert fake_service.sse_connects == 1
        assert not channel.reconnect_pending
        channel.connect()
        assert channel.state == ChannelState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_stream(self, api, fake_service, scheduler, caplog):
        fake_service.push("u1", {"type": "message", "roomId": "f1"})
        fake_service.push("u1", {"type": "typing", "roomId": "f1"})
        seen = []

        def handler(record):
            seen.append(record["type"])
            if record["type"] == "message":
                raise RuntimeError("boom")

        channel = PushChannel(api.http, "u1", handler, scheduler, lambda: True)
        channel.connect()
        await scheduler.drain()

        assert seen == ["message", "typing"]
        assert "Error handling server event" in caplog.text


class TestOpenStream:
    """A stream that stays open until the test releases it."""

    @pytest.mark.asyncio
    async def test_reconnect_replaces_open_stream(self, scheduler):
        streams = []

        def handler(request):
            stream = HangingStream()
            streams.append(stream)
            return httpx.Response(200, stream=stream, headers={"content-type": "text/event-stream"})

        async with httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler)) as http:
            channel = make_channel(http, scheduler)
            channel.connect()
            await wait_for(lambda: channel.state == ChannelState.OPEN)
            first_reader = channel._reader

            channel.connect()
            await wait_for(lambda: len(streams) == 2 and channel.state == ChannelState.OPEN)

            assert first_reader.cancelled()
            assert not channel.reconnect_pending

            channel.close()
            await scheduler.drain()
            assert channel.state == ChannelState.DISCONNECTED
            assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_server_closing_stream_triggers_reconnect(self, scheduler):
        stream = HangingStream()

        def handler(request):
            return httpx.Response(200, stream=stream)

        async with httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler)) as http:
            channel = make_channel(http, scheduler)
            channel.connect()
            await wait_for(lambda: channel.state == ChannelState.OPEN)

            stream.release.set()
            await scheduler.drain()

            assert channel.state == ChannelState.DISCONNECTED
            assert channel.reconnect_pending


class BrokenStream(httpx.AsyncByteStream):
    """Response body whose iteration fails with a non-transport error."""

    async def __aiter__(self):
        yield b": connected\n\n"
        raise RuntimeError("decoder crashed")


class TestReaderFailures:
    """Whatever kills the reader, the channel falls back to a reconnect."""

    def test_deeply_nested_json_is_dropped(self, caplog):
        line = "data: " + "[" * 200000 + "]" * 200000
        assert parse_line(line) is None
        assert "Failed to parse push message" in caplog.text

    @pytest.mark.asyncio
    async def test_nested_line_does_not_stop_following_records(self, scheduler):
        body = (
            "data: " + "[" * 200000 + "]" * 200000 + "\n\n"
            'data: {"type": "typing", "roomId": "f1", "userId": "u2"}\n\n'
        )

        def handler(request):
            return httpx.Response(200, text=body)

        received = []
        async with httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler)) as http:
            channel = make_channel(http, scheduler, received)
            channel.connect()
            await scheduler.drain()

        assert [r["type"] for r in received] == ["typing"]
        assert channel.state == ChannelState.DISCONNECTED
        assert channel.reconnect_pending

    @pytest.mark.asyncio
    async def test_unexpected_reader_error_schedules_reconnect(self, scheduler, caplog):
        def handler(request):
            return httpx.Response(200, stream=BrokenStream())

        async with httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler)) as http:
            channel = make_channel(http, scheduler)
            channel.connect()
            await scheduler.drain()

        assert channel.state == ChannelState.DISCONNECTED
        assert channel.reconnect_pending
        assert "Push channel reader failed: decoder crashed" in caplog.text

    @pytest.mark.asyncio
    async def test_stale_reconnect_timer_is_ignored(self, api, fake_service, scheduler):
        """A timer that fired just before being replaced does not connect."""
        channel = make_channel(api.http, scheduler)
        channel._on_error()
        _, _, _, fire_first = scheduler._queue[0]
        stale_run = fire_first()

        channel._on_error()
        await stale_run

        assert channel.connect_attempts == 0
        assert channel.reconnect_pending
        await scheduler.advance(5.0)
        assert channel.connect_attempts == 1
        assert fake_service.sse_connects == 1
