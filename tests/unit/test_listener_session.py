"""Unit tests for ListenerSession.

Drives the session through MockChannel streams and checks ordering,
middleware round-tripping and misuse detection.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from devzat_plugin.channel.mock import MockChannel
from devzat_plugin.client import create_test_client
from devzat_plugin.errors import (
    ApplicationError,
    PluginConnectionError,
    ProtocolMisuseError,
    TransportError,
)
from devzat_plugin.protocol.messages import Event, ListenerSpec
from devzat_plugin.session import SessionState


def event_frame(text: str, room: str = "#main", sender: str = "alice") -> dict[str, Any]:
    return {"room": room, "from": sender, "msg": text}


# =============================================================================
# Registration
# =============================================================================


class TestRegistration:
    """Tests for the registering state."""

    @pytest.mark.asyncio
    async def test_registration_frame_written_first(self, channel: MockChannel) -> None:
        """Exactly one registration frame is written before any event is read."""
        stream = channel.add_stream([event_frame("hi")], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(
            ListenerSpec(once=True, pattern="^hi"), lambda event: None
        )
        await session.join()

        assert stream.log[0] == (
            "send",
            {"listener": {"middleware": False, "once": True, "regex": "^hi"}},
        )
        assert stream.sent == [stream.log[0][1]]

    @pytest.mark.asyncio
    async def test_open_failure_raised_synchronously(self, channel: MockChannel) -> None:
        channel.open_error = PluginConnectionError("host down")
        client = await create_test_client(channel)

        with pytest.raises(PluginConnectionError):
            await client.register_listener(ListenerSpec(), lambda event: None)

        assert client.sessions == []

    @pytest.mark.asyncio
    async def test_registration_write_failure_closes_stream(self, channel: MockChannel) -> None:
        stream = channel.add_stream()
        stream.send_error = TransportError("reset")
        client = await create_test_client(channel)

        with pytest.raises(TransportError):
            await client.register_listener(ListenerSpec(), lambda event: None)

        assert stream.closed


# =============================================================================
# Dispatching
# =============================================================================


class TestDispatch:
    """Tests for event dispatch."""

    @pytest.mark.asyncio
    async def test_events_handled_once_in_order(self, channel: MockChannel) -> None:
        texts = [f"message {i}" for i in range(20)]
        channel.add_stream([event_frame(t) for t in texts], end=True)
        client = await create_test_client(channel)
        seen: list[str] = []

        session = await client.register_listener(ListenerSpec(), lambda e: seen.append(e.text))
        await session.join()

        assert seen == texts
        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_handler_receives_event_model(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("hello", room="#dev", sender="carol")], end=True)
        client = await create_test_client(channel)
        seen: list[Event] = []

        session = await client.register_listener(ListenerSpec(), seen.append)
        await session.join()

        assert seen == [Event(room="#dev", sender="carol", text="hello")]

    @pytest.mark.asyncio
    async def test_async_handler(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("a"), event_frame("b")], end=True)
        client = await create_test_client(channel)
        seen: list[str] = []

        async def handler(event: Event) -> None:
            await asyncio.sleep(0)
            seen.append(event.text)

        session = await client.register_listener(ListenerSpec(), handler)
        await session.join()

        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_no_overlap_between_handler_calls(self, channel: MockChannel) -> None:
        """The next event is not read until the current handler returned."""
        stream = channel.add_stream([event_frame("a"), event_frame("b"), event_frame("c")], end=True)
        client = await create_test_client(channel)
        active = 0
        max_active = 0

        async def handler(event: Event) -> None:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

        session = await client.register_listener(ListenerSpec(), handler)
        await session.join()

        assert max_active == 1
        assert len(stream.received) == 3


# =============================================================================
# Middleware
# =============================================================================


class TestMiddleware:
    """Tests for middleware response round-tripping."""

    @pytest.mark.asyncio
    async def test_response_written_before_next_read(self, channel: MockChannel) -> None:
        first, second = event_frame("hello"), event_frame("world")
        stream = channel.add_stream([first, second], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(
            ListenerSpec(middleware=True), lambda e: e.text.upper()
        )
        await session.join()

        assert stream.log == [
            ("send", {"listener": {"middleware": True, "once": False}}),
            ("receive", first),
            ("send", {"response": {"msg": "HELLO"}}),
            ("receive", second),
            ("send", {"response": {"msg": "WORLD"}}),
            ("receive", None),
        ]

    @pytest.mark.asyncio
    async def test_no_response_when_handler_returns_none(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("keep"), event_frame("edit")], end=True)
        client = await create_test_client(channel)

        def handler(event: Event) -> str | None:
            return "edited" if event.text == "edit" else None

        session = await client.register_listener(ListenerSpec(middleware=True), handler)
        await session.join()

        assert stream.sent[1:] == [{"response": {"msg": "edited"}}]

    @pytest.mark.asyncio
    async def test_empty_replacement_is_sent(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("censor me")], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(middleware=True), lambda e: "")
        await session.join()

        assert stream.sent[1:] == [{"response": {"msg": ""}}]

    @pytest.mark.asyncio
    async def test_non_string_replacement_is_misuse(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("x")], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(middleware=True), lambda e: 42)

        with pytest.raises(ProtocolMisuseError):
            await session.join()

    @pytest.mark.asyncio
    async def test_response_write_failure_terminates(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("x")])
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(middleware=True), lambda e: "y")
        stream.send_error = TransportError("connection reset")

        with pytest.raises(TransportError):
            await session.join()


# =============================================================================
# Protocol misuse
# =============================================================================


class TestProtocolMisuse:
    """Tests for replacements returned by non-middleware listeners."""

    @pytest.mark.asyncio
    async def test_replacement_on_plain_listener_terminates(self, channel: MockChannel) -> None:
        first = event_frame("one")
        stream = channel.add_stream([first, event_frame("two"), event_frame("three")], end=True)
        client = await create_test_client(channel)
        seen: list[str] = []

        def handler(event: Event) -> str:
            seen.append(event.text)
            return "rewritten"

        session = await client.register_listener(ListenerSpec(), handler)

        with pytest.raises(ProtocolMisuseError):
            await session.join()

        assert seen == ["one"]
        assert stream.received == [first]
        assert len(stream.sent) == 1  # registration only
        assert stream.closed
        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_misuse_is_not_a_transport_error(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("one")], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(), lambda e: "x")

        with pytest.raises(ProtocolMisuseError) as exc_info:
            await session.join()
        assert not isinstance(exc_info.value, TransportError)

    @pytest.mark.asyncio
    async def test_misuse_does_not_affect_other_sessions(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("bad")], end=True)
        good_stream = channel.add_stream([event_frame("a"), event_frame("b")], end=True)
        client = await create_test_client(channel)
        seen: list[str] = []

        broken = await client.register_listener(ListenerSpec(), lambda e: "oops")
        healthy = await client.register_listener(ListenerSpec(), lambda e: seen.append(e.text))

        with pytest.raises(ProtocolMisuseError):
            await broken.join()
        await healthy.join()

        assert seen == ["a", "b"]
        assert len(good_stream.received) == 2


# =============================================================================
# Handler failures and termination
# =============================================================================


class TestFailures:
    """Tests for handler failures, transport errors and stream end."""

    @pytest.mark.asyncio
    async def test_handler_error_reported_and_session_continues(
        self, channel: MockChannel
    ) -> None:
        channel.add_stream([event_frame("boom"), event_frame("fine")], end=True)
        client = await create_test_client(channel)
        errors: list[ApplicationError] = []
        seen: list[str] = []

        def handler(event: Event) -> None:
            if event.text == "boom":
                raise RuntimeError("handler exploded")
            seen.append(event.text)

        session = await client.register_listener(ListenerSpec(), handler, on_error=errors.append)
        await session.join()

        assert seen == ["fine"]
        assert len(errors) == 1
        assert isinstance(errors[0].payload, Event)
        assert isinstance(errors[0].__cause__, RuntimeError)
        assert session.error_count == 1

    @pytest.mark.asyncio
    async def test_failing_middleware_handler_writes_nothing(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("boom")], end=True)
        client = await create_test_client(channel)

        def handler(event: Event) -> str:
            raise ValueError("bad input")

        session = await client.register_listener(ListenerSpec(middleware=True), handler)
        await session.join()

        assert len(stream.sent) == 1
        assert session.error_count == 1

    @pytest.mark.asyncio
    async def test_async_error_callback(self, channel: MockChannel) -> None:
        channel.add_stream([event_frame("boom")], end=True)
        client = await create_test_client(channel)
        errors: list[ApplicationError] = []

        async def on_error(error: ApplicationError) -> None:
            errors.append(error)

        def handler(event: Event) -> None:
            raise RuntimeError("nope")

        session = await client.register_listener(ListenerSpec(), handler, on_error=on_error)
        await session.join()

        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_transport_error_surfaces_from_join(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("a")])
        stream.fail(TransportError("connection lost"))
        client = await create_test_client(channel)
        seen: list[str] = []

        session = await client.register_listener(ListenerSpec(), lambda e: seen.append(e.text))

        with pytest.raises(TransportError, match="connection lost"):
            await session.join()
        assert seen == ["a"]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_malformed_frame_is_transport_error(self, channel: MockChannel) -> None:
        channel.add_stream([{"unexpected": True}], end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(), lambda e: None)

        with pytest.raises(TransportError, match="malformed frame"):
            await session.join()

    @pytest.mark.asyncio
    async def test_stream_end_is_normal(self, channel: MockChannel) -> None:
        stream = channel.add_stream(end=True)
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(once=True), lambda e: None)
        await session.join()

        assert session.done
        assert stream.closed


# =============================================================================
# Cancellation
# =============================================================================


class TestClose:
    """Tests for closing a session from its owner."""

    @pytest.mark.asyncio
    async def test_close_while_waiting(self, channel: MockChannel) -> None:
        stream = channel.add_stream()
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(), lambda e: None)
        await asyncio.sleep(0)
        assert session.state == SessionState.STREAMING

        await session.close()
        await session.join()

        assert session.state == SessionState.CLOSED
        assert stream.closed

    @pytest.mark.asyncio
    async def test_close_before_loop_ran(self, channel: MockChannel) -> None:
        stream = channel.add_stream()
        client = await create_test_client(channel)

        session = await client.register_listener(ListenerSpec(), lambda e: None)
        await session.close()
        await session.join()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_running_handler_finishes_before_close(self, channel: MockChannel) -> None:
        """Closing during dispatch lets the handler and its response complete."""
        stream = channel.add_stream([event_frame("first"), event_frame("second")])
        client = await create_test_client(channel)
        started = asyncio.Event()
        release = asyncio.Event()
        seen: list[str] = []

        async def handler(event: Event) -> str:
            seen.append(event.text)
            started.set()
            await release.wait()
            return event.text.upper()

        session = await client.register_listener(ListenerSpec(middleware=True), handler)
        await started.wait()
        assert session.state == SessionState.DISPATCHING

        closer = asyncio.create_task(session.close())
        await asyncio.sleep(0.01)
        assert not closer.done()

        release.set()
        await closer
        await session.join()

        assert seen == ["first"]
        assert stream.sent[-1] == {"response": {"msg": "FIRST"}}
        assert len(stream.received) == 1

    @pytest.mark.asyncio
    async def test_handler_closes_own_session(self, channel: MockChannel) -> None:
        stream = channel.add_stream([event_frame("first"), event_frame("second")])
        client = await create_test_client(channel)
        sessions: list[Any] = []
        seen: list[str] = []

        async def handler(event: Event) -> str:
            seen.append(event.text)
            await sessions[0].close()
            return "bye"

        sessions.append(await client.register_listener(ListenerSpec(middleware=True), handler))
        await asyncio.wait_for(sessions[0].join(), timeout=2)

        assert seen == ["first"]
        assert stream.sent[-1] == {"response": {"msg": "bye"}}
        assert sessions[0].state == SessionState.CLOSED
        assert stream.closed

    @pytest.mark.asyncio
    async def test_client_close_stops_all_sessions(self, channel: MockChannel) -> None:
        first = channel.add_stream()
        second = channel.add_stream()
        client = await create_test_client(channel)

        await client.register_listener(ListenerSpec(), lambda e: None)
        await client.register_listener(ListenerSpec(middleware=True), lambda e: None)
        assert len(client.sessions) == 2

        await client.close()

        assert first.closed and second.closed
        assert client.sessions == []
