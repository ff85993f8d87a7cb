"""Error taxonomy for the plugin SDK.

Errors are split by how far they reach:
- PluginConnectionError / AuthError: connection-level, raised from connect or register
- TransportError / ProtocolMisuseError: terminal for one session, raised from join()
- ApplicationError: scoped to one event or invocation, reported via the side channel
"""

from __future__ import annotations

from typing import Any


class PluginError(Exception):
    """Base class for every error raised by the SDK."""


class PluginConnectionError(PluginError, ConnectionError):
    """Dialing the host or setting up the transport failed."""


class AuthError(PluginError):
    """The credential is malformed or was rejected by the host."""


class TransportError(PluginError):
    """A call or stream broke after it was established."""


class ProtocolMisuseError(PluginError):
    """A handler violated the listener contract.

    Raised when a listener that is not registered as middleware returns a
    replacement message. Kept distinct from TransportError so callers can tell
    programming errors apart from network failures.
    """


class ApplicationError(PluginError):
    """A handler, or the reply sent on its behalf, failed for one payload.

    Never terminates a session.
    """

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload
