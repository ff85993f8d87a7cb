"""Channel layer.

Provides the authenticated connection every Client call goes through:
- HTTPChannel: HTTP for unary and server-stream calls, WebSocket for listeners
- MockChannel: In-memory channel for tests

The same ``authorization: Bearer <token>`` header is attached to every call,
whatever its kind.
"""

from .base import (
    AUTHORIZATION_HEADER,
    BaseChannel,
    BidiStream,
    ChannelConfig,
    ChannelState,
    Credential,
    InboundStream,
)
from .http import HTTPChannel, create_http_channel
from .mock import MockChannel, MockStream, RecordedCall, create_mock_channel

__all__ = [
    # Base abstractions
    "AUTHORIZATION_HEADER",
    "BaseChannel",
    "BidiStream",
    "ChannelConfig",
    "ChannelState",
    "Credential",
    "InboundStream",
    # HTTP implementation
    "HTTPChannel",
    "create_http_channel",
    # Testing
    "MockChannel",
    "MockStream",
    "RecordedCall",
    "create_mock_channel",
]
