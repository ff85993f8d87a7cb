"""RPC names of the plugin service."""

from __future__ import annotations

from enum import Enum


class PluginMethod(str, Enum):
    """All calls the host exposes to plugins."""

    SEND_MESSAGE = "send_message"  # unary
    REGISTER_CMD = "register_cmd"  # server stream
    REGISTER_LISTENER = "register_listener"  # bidirectional stream
