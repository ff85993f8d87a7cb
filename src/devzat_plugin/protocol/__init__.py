"""Wire protocol of the Devzat plugin service.

Defines the payloads exchanged with the host, independent of the
transport carrying them:
- Unary: Message -> ack
- Server stream: CommandDef -> CommandInvocation*
- Bidirectional stream: ListenerFrame* <-> Event*
"""

from .messages import (
    CommandDef,
    CommandInvocation,
    Event,
    ListenerFrame,
    ListenerSpec,
    Message,
    MiddlewareResponse,
    WireModel,
)
from .methods import PluginMethod

__all__ = [
    "CommandDef",
    "CommandInvocation",
    "Event",
    "ListenerFrame",
    "ListenerSpec",
    "Message",
    "MiddlewareResponse",
    "PluginMethod",
    "WireModel",
]
