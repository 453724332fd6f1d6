"""Defines the lifecycle states of a single logical connection.

`ConnectionState` is the value tracked by `ConnectionStateMachine`. A handle
starts in `DISCONNECTED`, moves forward through `CONNECTING` and `HANDSHAKING`
to `CONNECTED`, and falls back to `DISCONNECTED` from any state when the
connection closes or fails.
"""

from enum import Enum, auto


class ConnectionState(Enum):
    """Represents where a connection is in its connect cycle."""
    DISCONNECTED = auto()
    """No connect cycle is running.
    This is the initial state, and the state every cycle ends in, whether it
    was closed by the caller, closed by the peer, or failed.
    """

    CONNECTING = auto()
    """`connect()` was accepted and the transport is being opened."""

    HANDSHAKING = auto()
    """The transport is open and the WebSocket handshake is being completed."""

    CONNECTED = auto()
    """The connection is usable. `send()` is only accepted in this state."""

    def __str__(self) -> str:
        return self.name
