"""HTTP + WebSocket channel to a Devzat host.

Wire mapping:
- POST /plugin/message        - SendMessage, JSON body, any 2xx is the ack
- POST /plugin/command        - RegisterCmd, JSON body, SSE response (one invocation per data line)
- WS   /plugin/listener       - RegisterListener, one JSON text message per frame
- GET  /health                - Reachability probe issued once by connect()

Unary and SSE calls share one httpx.AsyncClient. Every listener gets its
own WebSocket connection, so streams never interfere with each other.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator, Iterator
from typing import Any

import httpx
import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from ..errors import AuthError, PluginConnectionError, TransportError
from ..protocol.methods import PluginMethod
from .base import BaseChannel, ChannelConfig, Credential

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"

# method -> HTTP path
ENDPOINTS: dict[PluginMethod, str] = {
    PluginMethod.SEND_MESSAGE: "/plugin/message",
    PluginMethod.REGISTER_CMD: "/plugin/command",
    PluginMethod.REGISTER_LISTENER: "/plugin/listener",
}

AUTH_REJECTED = (401, 403)


def _check_status(response: httpx.Response, method: str) -> None:
    """Map an HTTP status to the SDK error taxonomy."""
    if response.status_code in AUTH_REJECTED:
        raise AuthError(f"{method} rejected by host: HTTP {response.status_code}")
    if response.status_code >= 400:
        raise TransportError(f"{method} failed: HTTP {response.status_code}")


@contextlib.contextmanager
def _translate_httpx_errors(method: str) -> Iterator[None]:
    """Re-raise httpx failures as SDK errors."""
    try:
        yield
    except (httpx.ConnectError, httpx.ConnectTimeout) as e:
        raise PluginConnectionError(f"{method}: cannot reach host: {e}") from e
    except httpx.TransportError as e:
        raise TransportError(f"{method}: transport failure: {e}") from e


def to_websocket_url(base_url: str) -> str:
    """Convert an http(s) base URL to its ws(s) counterpart."""
    return base_url.replace("http://", "ws://").replace("https://", "wss://").rstrip("/")


class SSEInboundStream:
    """Inbound frames parsed from a ``text/event-stream`` response body.

    Handles:
    - Parsing SSE format (data: {...}\\n\\n)
    - Skipping comments, keep-alives and undecodable lines
    """

    def __init__(self, response: httpx.Response, method: str):
        self._response = response
        self._method = method
        self._lines: AsyncIterator[str] = response.aiter_lines()
        self._closed = False

    async def receive(self) -> dict[str, Any] | None:
        if self._closed:
            return None

        while True:
            with _translate_httpx_errors(self._method):
                try:
                    line = await anext(self._lines)
                except StopAsyncIteration:
                    return None
                except httpx.StreamError as e:
                    raise TransportError(f"{self._method}: stream broken: {e}") from e

            if not line.startswith("data:"):
                continue

            data = line[5:].strip()
            if not data:
                continue
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse SSE data: {data[:80]}")
                continue
            if isinstance(frame, dict):
                return frame
            logger.warning(f"Ignoring non-object SSE frame: {data[:80]}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class WebSocketBidiStream:
    """Bidirectional frames over one WebSocket connection."""

    def __init__(self, ws: Any, method: str):
        self._ws = ws
        self._method = method
        self._closed = False

    async def send(self, frame: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError(f"{self._method}: stream already closed")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise TransportError(f"{self._method}: connection closed during send: {e}") from e

    async def receive(self) -> dict[str, Any] | None:
        if self._closed:
            return None

        while True:
            try:
                data = await self._ws.recv()
            except ConnectionClosedOK:
                return None
            except ConnectionClosed as e:
                raise TransportError(f"{self._method}: connection lost: {e}") from e

            try:
                frame = json.loads(data)
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Invalid WebSocket message on {self._method}")
                continue
            if isinstance(frame, dict):
                return frame
            logger.warning(f"Ignoring non-object WebSocket frame on {self._method}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()


class HTTPChannel(BaseChannel):
    """Channel over HTTP for unary/server-stream calls and WebSocket for listeners.

    Args:
        credential: Bearer credential attached to every call
        config: Host address and optional timeout
        transport: Optional httpx transport (e.g. httpx.ASGITransport for an
            in-process host)
    """

    def __init__(
        self,
        credential: Credential,
        config: ChannelConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(credential, config)
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _do_connect(self, headers: dict[str, str]) -> None:
        # No read timeout by default so SSE streams may idle; the health probe
        # and unary calls pass the full timeout per request.
        client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout, read=None),
            transport=self._transport,
        )

        try:
            with _translate_httpx_errors("connect"):
                response = await client.get(
                    HEALTH_PATH, headers=headers, timeout=self.config.timeout
                )
            if response.status_code in AUTH_REJECTED:
                raise AuthError(f"Host rejected credential: HTTP {response.status_code}")
        except Exception:
            await client.aclose()
            raise

        self._http_client = client

    async def _do_close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise PluginConnectionError("HTTP client not connected")
        return self._http_client

    async def _do_unary(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        client = self._client()
        with _translate_httpx_errors(method.value):
            response = await client.post(
                ENDPOINTS[method], json=payload, headers=headers, timeout=self.config.timeout
            )
        _check_status(response, method.value)

        if not response.content:
            return {}
        # any 2xx is the ack; an undecodable body carries nothing further
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def _do_open_server_stream(
        self, method: PluginMethod, payload: dict[str, Any], headers: dict[str, str]
    ) -> SSEInboundStream:
        client = self._client()
        request = client.build_request(
            "POST",
            ENDPOINTS[method],
            json=payload,
            headers={**headers, "Accept": "text/event-stream"},
        )
        with _translate_httpx_errors(method.value):
            response = await client.send(request, stream=True)

        try:
            _check_status(response, method.value)
        except Exception:
            await response.aclose()
            raise

        logger.debug(f"Opened server stream {method.value}")
        return SSEInboundStream(response, method.value)

    async def _do_open_bidi_stream(
        self, method: PluginMethod, headers: dict[str, str]
    ) -> WebSocketBidiStream:
        url = f"{to_websocket_url(self.config.base_url)}{ENDPOINTS[method]}"
        try:
            ws = await websockets.connect(
                url,
                additional_headers=headers,
                open_timeout=self.config.timeout,
                ping_interval=30,
                ping_timeout=10,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in AUTH_REJECTED:
                raise AuthError(f"{method.value} rejected by host: HTTP {status}") from e
            raise PluginConnectionError(f"{method.value}: handshake failed: HTTP {status}") from e
        except (InvalidHandshake, InvalidURI) as e:
            raise PluginConnectionError(f"{method.value}: handshake failed: {e}") from e
        except (OSError, TimeoutError) as e:
            raise PluginConnectionError(f"{method.value}: cannot reach host: {e}") from e

        logger.debug(f"Opened bidirectional stream {method.value}")
        return WebSocketBidiStream(ws, method.value)


def create_http_channel(
    base_url: str,
    token: str,
    timeout: float | None = None,
) -> HTTPChannel:
    """Create an HTTP channel (not yet connected).

    Args:
        base_url: Host address, e.g. https://devzat.hackclub.com:5556
        token: Bearer token issued by the host admin
        timeout: Optional dial/unary timeout in seconds

    Raises:
        AuthError: If the token cannot be sent as a header value
    """
    config = ChannelConfig(base_url=base_url, timeout=timeout)
    return HTTPChannel(Credential(token), config)
