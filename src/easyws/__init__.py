"""easyws: a small client-side WebSocket connection handle.

easyws wraps a WebSocket client connection behind three non-blocking
operations and four callbacks:

    import easyws

    handle = (easyws.ConnectionBuilder("ws://localhost:8765")
              .with_timeout(5000)      # connect timeout, milliseconds
              .with_interval(1000)     # keep-alive ping interval, milliseconds
              .build())

    handle.on_connect(lambda: handle.send("hello"))
    handle.on_message(lambda text: print("received:", text))
    handle.on_error(lambda text: print("error:", text))
    handle.on_disconnect(lambda: print("disconnected"))

    handle.connect()      # returns immediately
    ...
    handle.disconnect()   # returns immediately; on_disconnect fires later

The network I/O runs on a background asyncio event loop thread, which is
also where every callback is invoked. Callbacks never run concurrently with
each other. Calling an operation in the wrong state raises
`AlreadyConnectedError` or `NotConnectedError` straight away. Network
failures are reported only through the on-error callback.
"""

import logging

# --- Version ---
from ._version import __version__

# --- Logging Setup ---
# The library logs under the 'easyws' logger with a NullHandler attached, so
# nothing is printed unless the application configures logging, e.g.:
# logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger("easyws")
if not logger.hasHandlers():
    logger.addHandler(logging.NullHandler())

# --- Public API ---
from .config import ConnectionConfig, DEFAULT_TIMEOUT_MS, DEFAULT_INTERVAL_MS
from .connection import ConnectionBuilder, ConnectionHandle
from .core import (
    ConnectionState,
    ConnectionListener,
    Transport,
    TransportConnection,
    TransportEvent,
    WebSocketTransport,
    TaskManager,
    EasyWsError,
    NotConnectedError,
    AlreadyConnectedError,
    TransportError,
    TransportOpenError,
    ConnectRefusedError,
    ConnectTimeoutError,
    TransportClosedError,
)

__all__ = [
    '__version__',
    'ConnectionBuilder',
    'ConnectionHandle',
    'ConnectionConfig',
    'DEFAULT_TIMEOUT_MS',
    'DEFAULT_INTERVAL_MS',
    'ConnectionState',
    'ConnectionListener',
    'Transport',
    'TransportConnection',
    'TransportEvent',
    'WebSocketTransport',
    'TaskManager',
    'EasyWsError',
    'NotConnectedError',
    'AlreadyConnectedError',
    'TransportError',
    'TransportOpenError',
    'ConnectRefusedError',
    'ConnectTimeoutError',
    'TransportClosedError',
]
