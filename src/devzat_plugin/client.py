"""Plugin client - the SDK entry point.

Wraps one authenticated channel and exposes the three plugin operations:
- send_message: post a chat message
- register_listener: subscribe to chat events (optionally as middleware)
- register_command: register a named command answered by a handler

Example:
    async with await Client.connect("https://devzat.hackclub.com:5556", token) as client:
        session = await client.register_command(
            CommandDef(name="greet", description="Greet someone.", args_usage="<name>"),
            lambda invocation: f"Hello {invocation.args}!",
        )
        await session.join()
"""

from __future__ import annotations

import logging
from typing import Any

from .channel.base import BaseChannel
from .channel.http import create_http_channel
from .channel.mock import MockChannel
from .protocol.messages import CommandDef, ListenerSpec, Message
from .session import (
    BaseSession,
    CommandHandler,
    CommandSession,
    ErrorCallback,
    ListenerHandler,
    ListenerSession,
    send_message,
)

logger = logging.getLogger(__name__)


class Client:
    """Facade over an authenticated channel.

    The client owns its channel. Sessions it starts only borrow it, so any
    number of listeners and commands can run side by side.
    """

    def __init__(self, channel: BaseChannel):
        self._channel = channel
        self._sessions: list[BaseSession] = []

    @classmethod
    async def connect(cls, host: str, token: str, *, timeout: float | None = None) -> Client:
        """Dial the host once and return a connected client.

        Args:
            host: Host address, e.g. https://devzat.hackclub.com:5556
            token: Plugin token issued by the host admin
            timeout: Optional bound on dialing and unary calls, in seconds

        Raises:
            AuthError: If the token is malformed or rejected
            PluginConnectionError: If the host cannot be reached
        """
        channel = create_http_channel(host, token, timeout=timeout)
        await channel.connect()
        return cls(channel)

    @property
    def channel(self) -> BaseChannel:
        return self._channel

    @property
    def sessions(self) -> list[BaseSession]:
        """Sessions started through this client that have not finished."""
        return [s for s in self._sessions if not s.done]

    async def send_message(self, message: Message) -> None:
        """Send a chat message.

        Returns once the host acknowledged receipt, which says nothing about
        delivery to recipients.

        Raises:
            PluginConnectionError: If the host cannot be reached
            AuthError: If the host rejects the credential
            TransportError: If the call broke before the acknowledgment
        """
        await send_message(self._channel, message)

    async def register_listener(
        self,
        spec: ListenerSpec,
        handler: ListenerHandler,
        *,
        on_error: ErrorCallback | None = None,
    ) -> ListenerSession:
        """Subscribe to chat events.

        Args:
            spec: Subscription semantics (middleware, once, pattern)
            handler: Called once per event, in arrival order. Middleware
                handlers may return replacement text; others must return None.
            on_error: Receives an ApplicationError whenever the handler fails

        Returns:
            The running session
        """
        session = ListenerSession(self._channel, spec, handler, on_error=on_error)
        await session.start()
        self._track(session)
        return session

    async def register_command(
        self,
        definition: CommandDef,
        handler: CommandHandler,
        *,
        on_error: ErrorCallback | None = None,
    ) -> CommandSession:
        """Register a command; each invocation is answered with the handler's reply.

        Args:
            definition: Command name, description and argument usage
            handler: Called once per invocation, in arrival order; returns the reply text
            on_error: Receives an ApplicationError when the handler or its reply fails

        Returns:
            The running session
        """
        session = CommandSession(self._channel, definition, handler, on_error=on_error)
        await session.start()
        self._track(session)
        return session

    def _track(self, session: BaseSession) -> None:
        self._sessions = [s for s in self._sessions if not s.done]
        self._sessions.append(session)

    async def close(self) -> None:
        """Close every session started by this client, then the channel."""
        for session in self._sessions:
            await session.close()
        self._sessions.clear()
        await self._channel.close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def connect(host: str, token: str, *, timeout: float | None = None) -> Client:
    """Create a client connected to a Devzat host.

    Args:
        host: Host address, e.g. https://devzat.hackclub.com:5556
        token: Plugin token issued by the host admin
        timeout: Optional bound on dialing and unary calls, in seconds

    Returns:
        Connected Client
    """
    return await Client.connect(host, token, timeout=timeout)


async def create_test_client(channel: MockChannel | None = None) -> Client:
    """Create a client on an in-memory channel.

    Args:
        channel: Mock channel to use (created if not provided)

    Returns:
        Client with a connected MockChannel
    """
    channel = channel or MockChannel()
    await channel.connect()
    return Client(channel)
