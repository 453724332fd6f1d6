"""Core machinery behind `easyws.ConnectionHandle`.

This sub-package holds the pieces a handle is assembled from:

-   `ConnectionStateMachine` and `ConnectionState`: the connection lifecycle.
-   `CommandChannel`: ordered delivery of `SendCommand` and
    `DisconnectCommand` from the caller's thread to the network loop.
-   `EventDispatcher`, `CallbackSet` and `ConnectionListener`: delivery of
    connection events to user callbacks.
-   `NetworkLoop`: the coroutine that owns one connect cycle.
-   `Transport` and `WebSocketTransport`: the collaborator that performs the
    actual WebSocket I/O.
-   `TaskManager` and `get_task_manager()`: the background event loop thread.
-   The exception hierarchy rooted at `EasyWsError`.
"""

# --- Status and state machine ---
from .status import ConnectionState
from .state_machine import ConnectionStateMachine, StateEvent

# --- Exceptions ---
from .exceptions import (
    EasyWsError,
    NotConnectedError,
    AlreadyConnectedError,
    ChannelClosedError,
    InvalidTransitionError,
    TransportError,
    TransportOpenError,
    ConnectRefusedError,
    ConnectTimeoutError,
    TransportClosedError,
    TaskManagerError,
    LoopNotRunningError,
    TaskSubmissionError,
)

# --- Commands and events ---
from .command_channel import Command, CommandChannel, SendCommand, DisconnectCommand
from .dispatcher import (
    CallbackSet,
    ConnectionEvent,
    ConnectionListener,
    EventDispatcher,
    EventKind,
    LifecycleHandlerType,
    TextHandlerType,
)

# --- Transport ---
from .transport import Transport, TransportConnection, TransportEvent, TransportEventKind
from .websocket_transport import WebSocketTransport, WebSocketConnection

# --- Loop and task management ---
from .network_loop import NetworkLoop
from .task_manager import TaskManager
from .factories import get_task_manager, create_websocket_transport


__all__ = [
    'ConnectionState',
    'ConnectionStateMachine',
    'StateEvent',

    'EasyWsError',
    'NotConnectedError',
    'AlreadyConnectedError',
    'ChannelClosedError',
    'InvalidTransitionError',
    'TransportError',
    'TransportOpenError',
    'ConnectRefusedError',
    'ConnectTimeoutError',
    'TransportClosedError',
    'TaskManagerError',
    'LoopNotRunningError',
    'TaskSubmissionError',

    'Command',
    'CommandChannel',
    'SendCommand',
    'DisconnectCommand',
    'CallbackSet',
    'ConnectionEvent',
    'ConnectionListener',
    'EventDispatcher',
    'EventKind',
    'LifecycleHandlerType',
    'TextHandlerType',

    'Transport',
    'TransportConnection',
    'TransportEvent',
    'TransportEventKind',
    'WebSocketTransport',
    'WebSocketConnection',

    'NetworkLoop',
    'TaskManager',
    'get_task_manager',
    'create_websocket_transport',
]
