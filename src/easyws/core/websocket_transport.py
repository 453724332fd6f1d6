"""WebSocket implementation of the transport collaborator.

This module provides `WebSocketTransport`, which uses the `websockets` library
to open client connections. The handshake, framing, keep-alive pings and TLS
are all handled by `websockets`. This module only maps its results and
exceptions onto `TransportEvent` values and the easyws error hierarchy.
"""

import asyncio
import logging
import websockets # type: ignore[import-untyped]
from typing import Any, Optional

from .transport import Transport, TransportConnection, TransportEvent
from .exceptions import (
    ConnectRefusedError,
    ConnectTimeoutError,
    TransportClosedError,
    TransportError,
    TransportOpenError,
)

logger = logging.getLogger(__name__)

_DEFAULT_CLOSE_TIMEOUT_SECONDS = 1.0
_DEFAULT_PING_TIMEOUT_SECONDS = 10.0


class WebSocketConnection(TransportConnection):
    """Wraps one client connection returned by `websockets.connect`."""

    def __init__(self, ws_connection: Any, url: str, close_timeout: Optional[float] = _DEFAULT_CLOSE_TIMEOUT_SECONDS):
        """Initializes the wrapper.

        Args:
            ws_connection: The open `websockets` client connection.
            url (str): The endpoint it is connected to, used in messages.
            close_timeout (Optional[float]): Upper bound on waiting for `close()`.
        """
        self._ws_connection = ws_connection
        self._url = url
        self._close_timeout = close_timeout
        self._closed = False
        self._close_started = False
        # A CLOSED event owed to the reader after an ERROR has been reported.
        self._pending_event: Optional[TransportEvent] = None

    async def next_event(self) -> TransportEvent:
        if self._pending_event is not None:
            event, self._pending_event = self._pending_event, None
            return event
        if self._closed:
            return TransportEvent.closed()

        while True:
            try:
                message_data = await self._ws_connection.recv()
            except websockets.exceptions.ConnectionClosedOK as e:
                logger.info(f"WebSocket connection to {self._url} closed: {e}")
                self._closed = True
                return TransportEvent.closed(str(e))
            except websockets.exceptions.ConnectionClosedError as e:
                logger.warning(f"WebSocket connection to {self._url} closed with an error: {e}")
                self._closed = True
                self._pending_event = TransportEvent.closed(str(e))
                return TransportEvent.error(f"Connection to {self._url} lost: {e}")
            except websockets.exceptions.WebSocketException as e:
                logger.warning(f"WebSocket receive from {self._url} failed: {e}")
                self._closed = True
                self._pending_event = TransportEvent.closed(str(e))
                return TransportEvent.error(f"Receive from {self._url} failed: {e}")

            if isinstance(message_data, str):
                return TransportEvent.message(message_data)
            logger.warning(f"Received unexpected binary message from {self._url}. Ignoring.")

    async def send(self, text: str) -> None:
        if self._closed:
            raise TransportClosedError("Cannot send message, connection is closed.", url=self._url)
        try:
            await self._ws_connection.send(text)
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportClosedError("Failed to send message: Connection closed.", reason=str(e),
                                       url=self._url, original_exception=e) from e
        except websockets.exceptions.WebSocketException as e:
            raise TransportError(f"Failed to send message: {e}", url=self._url, original_exception=e) from e

    async def close(self) -> None:
        if self._close_started:
            return
        self._close_started = True
        logger.info(f"Closing WebSocket connection to {self._url}.")
        try:
            await asyncio.wait_for(self._ws_connection.close(), timeout=self._close_timeout)
        except (asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.warning(f"WebSocket close for {self._url} did not complete cleanly: {e}")


class WebSocketTransport(Transport):
    """Opens WebSocket client connections with the `websockets` library."""

    def __init__(self,
                 ping_timeout: Optional[float] = _DEFAULT_PING_TIMEOUT_SECONDS,
                 close_timeout: Optional[float] = _DEFAULT_CLOSE_TIMEOUT_SECONDS):
        """Initializes the transport.

        Args:
            ping_timeout (Optional[float]): Seconds to wait for a pong before the
                connection is considered dead.
            close_timeout (Optional[float]): Seconds allowed for the closing handshake.
        """
        self._ping_timeout = ping_timeout
        self._close_timeout = close_timeout

    async def open(self, endpoint: str, timeout: float, ping_interval: Optional[float]) -> TransportConnection:
        logger.info(f"Attempting to connect to WebSocket server at: {endpoint}")
        try:
            ws_connection = await websockets.connect(
                endpoint, open_timeout=timeout, ping_interval=ping_interval,
                ping_timeout=self._ping_timeout, close_timeout=self._close_timeout,
            )
        except ConnectionRefusedError as e:
            raise ConnectRefusedError(endpoint, e) from e
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError(endpoint, timeout, e) from e
        except (websockets.exceptions.InvalidURI, websockets.exceptions.WebSocketException, OSError) as e:
            raise TransportOpenError(f"WebSocket connection failed: {e}", url=endpoint, original_exception=e) from e
        logger.info(f"Successfully connected to WebSocket server: {endpoint}")
        return WebSocketConnection(ws_connection, endpoint, close_timeout=self._close_timeout)
