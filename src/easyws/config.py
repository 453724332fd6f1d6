"""Configuration for a single WebSocket connection handle.

`ConnectionConfig` holds the endpoint and timing settings a
`ConnectionHandle` is built with. It is immutable and validates itself on
construction, so a handle can never exist with an unusable configuration.
`ConnectionBuilder` is the usual way to create one.
"""
from dataclasses import dataclass
from typing import Optional

DEFAULT_TIMEOUT_MS = 10000
"""Default time allowed for opening a connection, in milliseconds."""

DEFAULT_INTERVAL_MS = 1000
"""Default interval between keep-alive pings, in milliseconds."""


@dataclass(frozen=True)
class ConnectionConfig:
    """Settings for one connection handle.

    Attributes:
        endpoint (str): The WebSocket URL to connect to. Must start with
            "ws://" or "wss://".
        timeout_ms (int): Milliseconds allowed for opening the connection,
            including the WebSocket handshake. Must be positive.
        interval_ms (int): Milliseconds between keep-alive pings. `0` disables
            client-side pings.
    """
    endpoint: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    interval_ms: int = DEFAULT_INTERVAL_MS

    def __post_init__(self):
        if not isinstance(self.endpoint, str) or not (self.endpoint.startswith("ws://") or self.endpoint.startswith("wss://")):
            raise ValueError(
                f"Invalid WebSocket endpoint {self.endpoint!r}. "
                "The endpoint must be a string starting with 'ws://' or 'wss://'."
            )
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be a positive integer, got {self.timeout_ms!r}.")
        if isinstance(self.interval_ms, bool) or not isinstance(self.interval_ms, int) or self.interval_ms < 0:
            raise ValueError(f"interval_ms must be a non-negative integer, got {self.interval_ms!r}.")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def interval_seconds(self) -> Optional[float]:
        """The ping interval in seconds, or `None` when pings are disabled."""
        if self.interval_ms == 0:
            return None
        return self.interval_ms / 1000.0
