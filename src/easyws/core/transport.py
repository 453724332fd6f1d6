"""Defines the transport collaborator used by the network loop.

The network loop never speaks the WebSocket protocol itself. It relies on a
`Transport` to open connections and on the returned `TransportConnection` to
send text, close, and report what arrives from the peer. Handshaking, framing
and TLS all live behind these interfaces.

`WebSocketTransport` (in `websocket_transport`) is the default implementation.
Tests supply their own in-memory implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class TransportEventKind(Enum):
    """The kinds of event a `TransportConnection` can report."""
    MESSAGE = auto()
    ERROR = auto()
    CLOSED = auto()


@dataclass(frozen=True)
class TransportEvent:
    """Something that happened on the transport connection.

    Attributes:
        kind (TransportEventKind): What happened.
        text (Optional[str]): The message text for `MESSAGE`, a description
            for `ERROR`, and an optional close reason for `CLOSED`.
    """
    kind: TransportEventKind
    text: Optional[str] = None

    @classmethod
    def message(cls, text: str) -> "TransportEvent":
        return cls(TransportEventKind.MESSAGE, text)

    @classmethod
    def error(cls, description: str) -> "TransportEvent":
        return cls(TransportEventKind.ERROR, description)

    @classmethod
    def closed(cls, reason: Optional[str] = None) -> "TransportEvent":
        return cls(TransportEventKind.CLOSED, reason)


class TransportConnection(ABC):
    """An open connection produced by `Transport.open()`."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Sends a text message.

        Raises:
            TransportClosedError: If the connection can no longer be used.
            TransportError: For other failures that leave the connection usable.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Closes the connection and waits for the peer to confirm.

        Must be idempotent. After `close()` returns, `next_event()` eventually
        reports `CLOSED`.
        """
        pass

    @abstractmethod
    async def next_event(self) -> TransportEvent:
        """Waits for the next event from the peer.

        Once a `CLOSED` event has been returned, every later call returns
        `CLOSED` again.
        """
        pass


class Transport(ABC):
    """Opens transport connections."""

    @abstractmethod
    async def open(self, endpoint: str, timeout: float, ping_interval: Optional[float]) -> TransportConnection:
        """Opens a connection to `endpoint` and completes its handshake.

        Args:
            endpoint (str): The WebSocket URL to connect to.
            timeout (float): Seconds allowed for opening the connection.
            ping_interval (Optional[float]): Seconds between keep-alive pings,
                or `None` to disable them.

        Returns:
            TransportConnection: The open connection.

        Raises:
            TransportOpenError: If the connection cannot be opened.
        """
        pass
