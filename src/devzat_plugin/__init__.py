"""Devzat plugin SDK - act as a plugin for a Devzat chat host.

Provides:
- Client: send messages, register listeners and commands
- ListenerSession / CommandSession: running subscriptions with join()/close()
- HTTPChannel: authenticated connection to a host
- MockChannel: in-memory channel for tests
"""

from .channel import (
    BaseChannel,
    ChannelConfig,
    Credential,
    HTTPChannel,
    MockChannel,
    MockStream,
    create_http_channel,
    create_mock_channel,
)
from .client import Client, connect, create_test_client
from .errors import (
    ApplicationError,
    AuthError,
    PluginConnectionError,
    PluginError,
    ProtocolMisuseError,
    TransportError,
)
from .protocol import (
    CommandDef,
    CommandInvocation,
    Event,
    ListenerSpec,
    Message,
    MiddlewareResponse,
)
from .session import CommandSession, ListenerSession, SessionState

__version__ = "0.1.0"

__all__ = [
    # Client
    "Client",
    "connect",
    "create_test_client",
    # Sessions
    "CommandSession",
    "ListenerSession",
    "SessionState",
    # Channels
    "BaseChannel",
    "ChannelConfig",
    "Credential",
    "HTTPChannel",
    "MockChannel",
    "MockStream",
    "create_http_channel",
    "create_mock_channel",
    # Types
    "CommandDef",
    "CommandInvocation",
    "Event",
    "ListenerSpec",
    "Message",
    "MiddlewareResponse",
    # Errors
    "ApplicationError",
    "AuthError",
    "PluginConnectionError",
    "PluginError",
    "ProtocolMisuseError",
    "TransportError",
]
