"""Streaming sessions: listener and command subscriptions.

Each session owns one long-lived stream and runs its receive/dispatch loop
in its own asyncio task. Within a session everything is sequential: the next
frame is not read until the current handler call (and any write it requires)
has finished, which bounds in-flight work to one frame per session.

State machines:
- ListenerSession: REGISTERING -> STREAMING -> DISPATCHING -> (STREAMING | CLOSED)
- CommandSession:  REGISTERING -> STREAMING -> DISPATCHING -> REPLYING -> (STREAMING | CLOSED)

Sessions never share mutable state; they only hold a reference to the
client's channel.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError

from .channel.base import BaseChannel, BidiStream, InboundStream
from .errors import ApplicationError, PluginError, ProtocolMisuseError, TransportError
from .protocol.messages import (
    CommandDef,
    CommandInvocation,
    Event,
    ListenerFrame,
    ListenerSpec,
    Message,
    WireModel,
)
from .protocol.methods import PluginMethod

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=WireModel)

ListenerHandler = Callable[[Event], str | None | Awaitable[str | None]]
CommandHandler = Callable[[CommandInvocation], str | Awaitable[str]]
ErrorCallback = Callable[[ApplicationError], Any]


class SessionState(str, Enum):
    """Lifecycle of a streaming session."""

    REGISTERING = "registering"
    STREAMING = "streaming"
    DISPATCHING = "dispatching"
    REPLYING = "replying"
    CLOSED = "closed"


async def _call(fn: Callable[[Any], Any], arg: Any) -> Any:
    """Invoke a sync or async callable."""
    result = fn(arg)
    if inspect.isawaitable(result):
        result = await result
    return result


async def send_message(channel: BaseChannel, message: Message) -> None:
    """Issue a SendMessage call; returns once the host acknowledged it."""
    await channel.unary(PluginMethod.SEND_MESSAGE, message.to_wire())


class BaseSession(ABC):
    """Base class for streaming sessions.

    Provides:
    - Registration and background loop management
    - join()/close() for the owner of the session
    - The per-payload error side channel
    """

    def __init__(self, channel: BaseChannel, on_error: ErrorCallback | None = None):
        self._channel = channel
        self._on_error = on_error
        self._state = SessionState.REGISTERING
        self._stream: InboundStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_requested = False
        self.error_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable name used in logs."""
        ...

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state == SessionState.CLOSED and (self._task is None or self._task.done())

    async def start(self) -> None:
        """Register with the host and start the receive loop.

        Connection-level failures are raised here, before any task exists.
        """
        if self._task is not None or self._state != SessionState.REGISTERING:
            raise RuntimeError(f"{self.name} already started")

        try:
            self._stream = await self._register()
        except BaseException:
            self._state = SessionState.CLOSED
            raise

        self._state = SessionState.STREAMING
        self._task = asyncio.create_task(self._run(), name=f"devzat-{self.name}")
        logger.info(f"{self.name} registered")

    async def join(self) -> None:
        """Wait for the session to end.

        Returns normally when the host ended the stream or the owner closed
        the session.

        Raises:
            TransportError: If the stream broke
            ProtocolMisuseError: If a handler violated the listener contract
        """
        if self._task is None:
            raise RuntimeError(f"{self.name} was never started")

        await asyncio.wait([self._task])
        if self._task.cancelled():
            if self._stop_requested:
                return
            raise asyncio.CancelledError()
        error = self._task.exception()
        if error is not None:
            raise error

    async def close(self) -> None:
        """Stop the session at its next suspension point.

        A session waiting for the next frame stops immediately. A handler call
        already in progress, and the write that follows it, run to completion
        first.

        Called from inside a handler, close() returns at once and the loop
        exits after that handler returns.
        """
        self._stop_requested = True
        if self._task is None:
            self._state = SessionState.CLOSED
            return
        if asyncio.current_task() is self._task:
            return

        if not self._task.done() and self._state == SessionState.STREAMING:
            self._task.cancel()
        await asyncio.wait([self._task])

        self._state = SessionState.CLOSED
        if self._stream is not None:
            await self._stream.close()

    async def _run(self) -> None:
        stream = self._stream
        assert stream is not None
        try:
            while not self._stop_requested:
                self._state = SessionState.STREAMING
                frame = await stream.receive()
                if frame is None:
                    logger.info(f"{self.name}: stream ended by host")
                    break

                self._state = SessionState.DISPATCHING
                await self._dispatch(frame)
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.debug(f"{self.name}: closed by owner")
        except PluginError as e:
            logger.error(f"{self.name} terminated: {e}")
            raise
        finally:
            self._state = SessionState.CLOSED
            await stream.close()

    def _decode(self, model: type[M], frame: dict[str, Any]) -> M:
        try:
            return model.from_wire(frame)
        except ValidationError as e:
            raise TransportError(f"{self.name}: malformed frame from host: {e}") from e

    async def _report(self, message: str, payload: Any, cause: BaseException | None = None) -> None:
        """Send an ApplicationError through the side channel."""
        error = ApplicationError(message, payload=payload)
        error.__cause__ = cause
        self.error_count += 1
        logger.warning(f"{self.name}: {message}")

        if self._on_error is None:
            return
        try:
            await _call(self._on_error, error)
        except Exception as e:
            logger.error(f"{self.name}: error callback failed: {e}")

    # Abstract methods for subclasses
    @abstractmethod
    async def _register(self) -> InboundStream:
        """Open the stream and perform the registration call."""
        ...

    @abstractmethod
    async def _dispatch(self, frame: dict[str, Any]) -> None:
        """Handle one inbound frame."""
        ...


class ListenerSession(BaseSession):
    """A live feed of chat events, optionally with middleware rewriting.

    For middleware listeners the handler may return a replacement text; it is
    written back on the same stream before the next event is read. A
    non-middleware handler must return None.
    """

    def __init__(
        self,
        channel: BaseChannel,
        spec: ListenerSpec,
        handler: ListenerHandler,
        on_error: ErrorCallback | None = None,
    ):
        super().__init__(channel, on_error)
        self.spec = spec
        self._handler = handler
        self._bidi: BidiStream | None = None

    @property
    def name(self) -> str:
        kind = "middleware" if self.spec.middleware else "listener"
        if self.spec.pattern:
            return f"{kind}[{self.spec.pattern}]"
        return kind

    async def _register(self) -> InboundStream:
        stream = await self._channel.open_bidi_stream(PluginMethod.REGISTER_LISTENER)
        try:
            await stream.send(ListenerFrame.register(self.spec).to_wire())
        except BaseException:
            await stream.close()
            raise
        self._bidi = stream
        return stream

    async def _dispatch(self, frame: dict[str, Any]) -> None:
        event = self._decode(Event, frame)

        try:
            replacement = await _call(self._handler, event)
        except Exception as e:
            await self._report(f"listener handler failed: {e}", event, e)
            return

        if replacement is None:
            return
        if not self.spec.middleware:
            raise ProtocolMisuseError(
                "Listener handler returned a replacement although it is not registered as middleware"
            )
        if not isinstance(replacement, str):
            raise ProtocolMisuseError(
                f"Middleware handler must return str or None, got {type(replacement).__name__}"
            )

        assert self._bidi is not None
        await self._bidi.send(ListenerFrame.reply(replacement).to_wire())


class CommandSession(BaseSession):
    """A registered command; every invocation is answered in its room.

    The handler's return value is sent as a message from the plugin's own
    identity to the room the command was invoked in.
    """

    def __init__(
        self,
        channel: BaseChannel,
        definition: CommandDef,
        handler: CommandHandler,
        on_error: ErrorCallback | None = None,
    ):
        super().__init__(channel, on_error)
        self.definition = definition
        self._handler = handler

    @property
    def name(self) -> str:
        return f"command[{self.definition.name}]"

    async def _register(self) -> InboundStream:
        return await self._channel.open_server_stream(
            PluginMethod.REGISTER_CMD, self.definition.to_wire()
        )

    async def _dispatch(self, frame: dict[str, Any]) -> None:
        invocation = self._decode(CommandInvocation, frame)

        try:
            reply = await _call(self._handler, invocation)
        except Exception as e:
            await self._report(f"command handler failed: {e}", invocation, e)
            return
        if not isinstance(reply, str):
            await self._report(
                f"command handler must return str, got {type(reply).__name__}", invocation
            )
            return

        self._state = SessionState.REPLYING
        try:
            await send_message(self._channel, Message(room=invocation.room, text=reply))
        except PluginError as e:
            await self._report(f"reply to {invocation.room} failed: {e}", invocation, e)
