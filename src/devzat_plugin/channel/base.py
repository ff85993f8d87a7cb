"""Authenticated channel abstraction.

A channel is the single connection a Client holds to the host. It offers
three call kinds and attaches the same ``authorization`` header to each:

- unary: one request, one acknowledgment
- server stream: one request, many inbound frames
- bidirectional stream: frames in both directions

Architecture:
- Credential validates the bearer token once and renders the header
- BaseChannel owns the credential and calls the transport hooks with headers
- Implementations (HTTPChannel, MockChannel) only move bytes
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..errors import AuthError, PluginConnectionError
from ..protocol.methods import PluginMethod

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"


@dataclass(frozen=True)
class Credential:
    """Opaque bearer token, validated at construction.

    The token must render as a single printable ASCII header value.
    """

    token: str = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.token, str) or not self.token:
            raise AuthError("Token must be a non-empty string")
        if self.token != self.token.strip():
            raise AuthError("Token must not have leading or trailing whitespace")
        if not all(0x20 <= ord(ch) < 0x7F for ch in self.token):
            raise AuthError("Token must be printable ASCII without control characters")

    @property
    def header_value(self) -> str:
        return f"Bearer {self.token}"

    def metadata(self) -> dict[str, str]:
        """Headers attached to every call issued with this credential."""
        return {AUTHORIZATION_HEADER: self.header_value}


@dataclass
class ChannelConfig:
    """Channel configuration.

    Only the host address is required. ``timeout`` bounds dialing and unary
    calls; streams never time out on reads.
    """

    base_url: str = "http://localhost:5556"
    timeout: float | None = None


class ChannelState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@runtime_checkable
class InboundStream(Protocol):
    """A stream of frames coming from the host."""

    async def receive(self) -> dict[str, Any] | None:
        """Wait for the next frame.

        Returns:
            The decoded frame, or None once the host ended the stream normally

        Raises:
            TransportError: If the stream broke
        """
        ...

    async def close(self) -> None:
        """Release the stream. Safe to call more than once."""
        ...


@runtime_checkable
class BidiStream(InboundStream, Protocol):
    """A stream that can also carry frames to the host."""

    async def send(self, frame: dict[str, Any]) -> None:
        """Write one frame.

        Raises:
            TransportError: If the stream broke
        """
        ...


class BaseChannel(ABC):
    """Base class for authenticated channels.

    Provides:
    - Credential handling and header injection for every call kind
    - Connection state tracking
    - Async context manager support
    """

    def __init__(self, credential: Credential, config: ChannelConfig | None = None):
        self.credential = credential
        self.config = config or ChannelConfig()
        self._state = ChannelState.DISCONNECTED

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    def metadata(self) -> dict[str, str]:
        """Headers attached to every outbound call."""
        return self.credential.metadata()

    async def connect(self) -> None:
        """Dial the host once.

        Raises:
            PluginConnectionError: If the host cannot be reached
            AuthError: If the host rejects the credential
        """
        if self._state == ChannelState.CONNECTED:
            return

        self._state = ChannelState.CONNECTING
        try:
            await self._do_connect(self.metadata())
        except (AuthError, PluginConnectionError):
            self._state = ChannelState.DISCONNECTED
            raise
        except Exception as e:
            self._state = ChannelState.DISCONNECTED
            raise PluginConnectionError(f"Failed to connect: {e}") from e

        self._state = ChannelState.CONNECTED
        logger.info(f"{self.__class__.__name__} connected to {self.config.base_url}")

    async def close(self) -> None:
        """Close the channel."""
        if self._state in (ChannelState.DISCONNECTED, ChannelState.CLOSED):
            self._state = ChannelState.CLOSED
            return

        self._state = ChannelState.CLOSED
        await self._do_close()
        logger.info(f"{self.__class__.__name__} closed")

    async def unary(self, method: PluginMethod, payload: dict[str, Any]) -> dict[str, Any]:
        """Issue a unary call and wait for the host's acknowledgment."""
        self._ensure_connected()
        return await self._do_unary(method, payload, self.metadata())

    async def open_server_stream(
        self, method: PluginMethod, payload: dict[str, Any]
    ) -> InboundStream:
        """Issue a call whose response is a stream of frames."""
        self._ensure_connected()
        return await self._do_open_server_stream(method, payload, self.metadata())

    async def open_bidi_stream(self, method: PluginMethod) -> BidiStream:
        """Open a bidirectional stream."""
        self._ensure_connected()
        return await self._do_open_bidi_stream(method, self.metadata())

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise PluginConnectionError("Channel not connected")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_connect(self, headers: dict[str, str]) -> None:
        """Implementation-specific dial logic."""
        ...

    @abstractmethod
    async def _do_close(self) -> None:
        """Implementation-specific shutdown logic."""
        ...

    @abstractmethod
    async def _do_unary(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def _do_open_server_stream(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> InboundStream:
        ...

    @abstractmethod
    async def _do_open_bidi_stream(
        self, method: PluginMethod, headers: dict[str, str]
    ) -> BidiStream:
        ...

    async def __aenter__(self) -> BaseChannel:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
