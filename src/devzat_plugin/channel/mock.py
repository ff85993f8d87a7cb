"""In-memory channel for testing plugins without a host.

Usage:
    channel = MockChannel()
    stream = channel.add_stream(
        [{"room": "#main", "from": "alice", "msg": "hi"}],
        end=True,
    )

    client = create_test_client(channel)
    session = await client.register_listener(ListenerSpec(), handler)
    await session.join()

    assert stream.sent[0] == {"listener": {"middleware": False, "once": False}}
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..errors import TransportError
from ..protocol.methods import PluginMethod
from .base import BaseChannel, ChannelConfig, Credential

_END = object()


@dataclass
class RecordedCall:
    """One call observed by the mock channel."""

    kind: str  # "unary" | "server_stream" | "bidi_stream"
    method: PluginMethod
    headers: dict[str, str]
    payload: dict[str, Any] | None = None


class MockStream:
    """Scripted stream used for both server and bidirectional calls.

    Inbound frames are queued with push()/end()/fail(). Everything the
    client writes is kept in ``sent``; ``log`` records sends and receives in
    the order they happened.
    """

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.log: list[tuple[str, dict[str, Any] | None]] = []
        self.closed = False
        self.send_error: Exception | None = None

    def push(self, *frames: dict[str, Any]) -> None:
        """Queue inbound frames."""
        for frame in frames:
            self._inbound.put_nowait(frame)

    def end(self) -> None:
        """Queue a normal end of stream."""
        self._inbound.put_nowait(_END)

    def fail(self, error: Exception | None = None) -> None:
        """Queue a stream failure."""
        self._inbound.put_nowait(error or TransportError("mock stream broken"))

    @property
    def received(self) -> list[dict[str, Any]]:
        return [frame for op, frame in self.log if op == "receive" and frame is not None]

    async def receive(self) -> dict[str, Any] | None:
        if self.closed:
            return None

        item = await self._inbound.get()
        if item is _END:
            self.log.append(("receive", None))
            return None
        if isinstance(item, Exception):
            raise item
        self.log.append(("receive", item))
        return item

    async def send(self, frame: dict[str, Any]) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self.closed:
            raise TransportError("mock stream closed")
        self.sent.append(frame)
        self.log.append(("send", frame))

    async def close(self) -> None:
        self.closed = True


class MockChannel(BaseChannel):
    """Channel that records calls and serves scripted streams.

    No actual I/O - everything is in-memory.
    """

    def __init__(self, token: str = "mock-token", config: ChannelConfig | None = None):
        super().__init__(Credential(token), config or ChannelConfig(base_url="mock://host"))
        self.calls: list[RecordedCall] = []
        self.streams: list[MockStream] = []
        self._prepared: list[MockStream] = []
        self._unary_errors: list[Exception] = []
        self.open_error: Exception | None = None

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        """Payloads of every SendMessage call, in order."""
        return [
            call.payload or {}
            for call in self.calls
            if call.kind == "unary" and call.method == PluginMethod.SEND_MESSAGE
        ]

    def add_stream(
        self, frames: list[dict[str, Any]] | None = None, end: bool = False
    ) -> MockStream:
        """Prepare the stream handed out by the next open call."""
        stream = MockStream()
        if frames:
            stream.push(*frames)
        if end:
            stream.end()
        self._prepared.append(stream)
        return stream

    def fail_next_unary(self, error: Exception) -> None:
        """Make the next unary call raise ``error`` instead of acknowledging."""
        self._unary_errors.append(error)

    def _next_stream(self) -> MockStream:
        if self.open_error is not None:
            raise self.open_error
        stream = self._prepared.pop(0) if self._prepared else MockStream()
        self.streams.append(stream)
        return stream

    async def _do_connect(self, headers: dict[str, str]) -> None:
        pass

    async def _do_close(self) -> None:
        pass

    async def _do_unary(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        self.calls.append(RecordedCall("unary", method, headers, payload))
        if self._unary_errors:
            raise self._unary_errors.pop(0)
        return {}

    async def _do_open_server_stream(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> MockStream:
        self.calls.append(RecordedCall("server_stream", method, headers, payload))
        return self._next_stream()

    async def _do_open_bidi_stream(
        self, method: PluginMethod, headers: dict[str, str]
    ) -> MockStream:
        self.calls.append(RecordedCall("bidi_stream", method, headers))
        return self._next_stream()


def create_mock_channel(token: str = "mock-token") -> MockChannel:
    """Create a mock channel for testing.

    Returns:
        MockChannel, not yet connected
    """
    return MockChannel(token)
