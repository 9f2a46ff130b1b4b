"""
Duplex JSON-RPC channel.
Plain WebSocket frames carrying JSON-RPC 2.0 text, with a background reader.
"""

import asyncio
import json
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core import errors
from ..core.config import settings
from ..core.log import Loggable
from ..protocol.decoder import find_compressed


_CLOSED = object()


class RpcChannel(Loggable):
    """
    JSON-RPC over a raw WebSocket.

    Responses and errors are queued in arrival order. Async Message
    notifications without a compressed payload are acknowledgements: only
    their server sequence number is recorded.
    """

    name = "Channel"

    def __init__(self, open_timeout: float | None = None):
        """
        Initialize channel.

        Args:
            open_timeout: Handshake timeout in seconds (defaults to config)
        """
        self.open_timeout = open_timeout if open_timeout is not None else settings.connect_timeout
        self.ws: ClientConnection | None = None
        self.last_server_sequence: int = -1
        self._responses: asyncio.Queue = asyncio.Queue()
        self._reader: asyncio.Task | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self._closed

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        """
        Perform the WebSocket handshake and start the reader.

        Raises:
            ConnectionError: On handshake failure or timeout
        """
        try:
            self.ws = await connect(
                url,
                additional_headers=headers,
                open_timeout=self.open_timeout,
                max_size=None,
            )
        except (InvalidHandshake, InvalidURI, OSError, asyncio.TimeoutError) as e:
            raise errors.ConnectionError(
                f"WebSocket handshake failed: {e}",
                context={"url": url.split("?", 1)[0]},
            ) from e

        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())
        self.log("Connected")

    async def send(self, message: dict[str, Any]) -> None:
        """Send one JSON-RPC message."""
        if not self.is_open:
            raise errors.ConnectionError("Channel is not connected")
        try:
            await self.ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise errors.ConnectionError(f"Channel closed while sending: {e}") from e

    async def receive(self, timeout: float) -> dict[str, Any]:
        """
        Wait for the next queued response.

        Raises:
            ConnectionError: On timeout or when the socket has closed
        """
        try:
            item = await asyncio.wait_for(self._responses.get(), timeout)
        except asyncio.TimeoutError as e:
            raise errors.ConnectionError(
                f"No response within {timeout:.0f}s",
                context={"timeout": timeout},
            ) from e

        if item is _CLOSED:
            # Keep the marker for any later receive
            self._responses.put_nowait(_CLOSED)
            raise errors.ConnectionError("Channel closed with a request pending")
        return item

    async def close(self) -> None:
        """Close the socket and stop the reader. Idempotent."""
        if self.ws is None:
            return
        ws, self.ws = self.ws, None
        self._closed = True
        await ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._responses.put_nowait(_CLOSED)
        self.log("Disconnected")

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    self.log(f"Dropping non-JSON frame ({len(raw)} bytes)")
                    continue
                self._route(message)
        except ConnectionClosed as e:
            self.log(f"Socket closed: {e}")
        finally:
            self._closed = True
            self._responses.put_nowait(_CLOSED)

    def _route(self, message: Any) -> None:
        if not isinstance(message, dict):
            self.log("Dropping non-object frame")
            return

        if message.get("method") == "Message":
            params = message.get("params")
            body = params[0] if isinstance(params, list) and params and isinstance(params[0], dict) else {}
            sequence = body.get("sequenceNumber")
            if isinstance(sequence, int) and sequence > self.last_server_sequence:
                self.last_server_sequence = sequence
            if find_compressed(message) is None:
                return
            self._responses.put_nowait(message)
            return

        if "error" in message or "result" in message or find_compressed(message) is not None:
            self._responses.put_nowait(message)
            return

        self.log(f"Ignoring unsolicited message {message.get('method', '?')}")
