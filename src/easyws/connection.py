"""The public connection API: `ConnectionBuilder` and `ConnectionHandle`.

A `ConnectionHandle` represents one logical WebSocket connection that can be
connected, used and disconnected any number of times. All of its operations
return immediately:

-   `connect()` claims the handle and schedules a `NetworkLoop` on the
    background event loop; success or failure is reported later through the
    on-connect or on-error callback.
-   `send()` and `disconnect()` only queue a command for that loop.

Calling an operation in the wrong state raises at once (`AlreadyConnectedError`
or `NotConnectedError`). Failures that happen on the network are never raised;
they are passed as text to the on-error callback.

Example:
    >>> import easyws
    >>> handle = easyws.ConnectionBuilder("ws://localhost:8765").with_timeout(5000).build()
    >>> handle.on_message(lambda text: print("received", text))
    >>> handle.on_connect(lambda: handle.send("hello"))
    >>> handle.connect()
"""

import logging
import threading
import weakref
from typing import Optional

from .config import ConnectionConfig, DEFAULT_INTERVAL_MS, DEFAULT_TIMEOUT_MS
from .core import (
    AlreadyConnectedError,
    CallbackSet,
    ChannelClosedError,
    CommandChannel,
    ConnectionListener,
    ConnectionState,
    ConnectionStateMachine,
    DisconnectCommand,
    EventDispatcher,
    EventKind,
    InvalidTransitionError,
    LifecycleHandlerType,
    NetworkLoop,
    NotConnectedError,
    SendCommand,
    StateEvent,
    TaskManager,
    TaskManagerError,
    TextHandlerType,
    Transport,
    create_websocket_transport,
    get_task_manager,
)

logger = logging.getLogger(__name__)

_DEFAULT_CLOSE_TIMEOUT_SECONDS = 5.0


class _CycleRefs:
    """The current cycle's channel, loop and task.

    Kept apart from the handle so the garbage-collection finalizer can reach
    them without keeping the handle alive.
    """
    __slots__ = ("channel", "network_loop", "task")

    def __init__(self):
        self.channel: Optional[CommandChannel] = None
        self.network_loop: Optional[NetworkLoop] = None
        self.task = None


def _disconnect_on_collect(state_machine: ConnectionStateMachine, cycle: _CycleRefs, endpoint: str) -> None:
    """Finalizer: asks a still-active cycle to disconnect."""
    channel = cycle.channel
    if channel is None or state_machine.current() is ConnectionState.DISCONNECTED:
        return
    logger.info(f"Connection handle for {endpoint} released while active; disconnecting.")
    try:
        channel.submit(DisconnectCommand())
    except ChannelClosedError:
        logger.debug(f"Connection to {endpoint} was already disconnecting.")
    channel.close()


class ConnectionHandle:
    """A client WebSocket connection with connect/disconnect/send and callbacks.

    Handles are normally created with `ConnectionBuilder`. Callbacks run on the
    background event loop thread, one at a time; they may call back into the
    handle (for example `send()` from on-connect).

    A handle can be used as a context manager, in which case `close()` is
    called on exit. A handle that is garbage collected while connected
    disconnects itself.
    """

    def __init__(self,
                 config: ConnectionConfig,
                 transport: Optional[Transport] = None,
                 task_manager: Optional[TaskManager] = None):
        """Initializes a disconnected handle.

        Args:
            config (ConnectionConfig): Endpoint and timing settings.
            transport (Optional[Transport]): The transport collaborator. Defaults
                to a `WebSocketTransport`.
            task_manager (Optional[TaskManager]): The background event loop to
                run on. Defaults to the shared instance from `get_task_manager()`.
        """
        self._config = config
        self._transport = transport if transport is not None else create_websocket_transport()
        self._task_manager = task_manager if task_manager is not None else get_task_manager()

        self._state_machine = ConnectionStateMachine()
        self._callbacks = CallbackSet()
        self._dispatcher = EventDispatcher(self._callbacks)

        # Guards _cycle. Never held while waiting on the event loop.
        self._lock = threading.Lock()
        self._cycle = _CycleRefs()
        self._finalizer = weakref.finalize(self, _disconnect_on_collect, self._state_machine, self._cycle, config.endpoint)

    # --- Read-only views ---

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        """The current lifecycle state. May lag slightly behind the network loop."""
        return self._state_machine.current()

    def is_connected(self) -> bool:
        return self._state_machine.current() is ConnectionState.CONNECTED

    # --- Operations ---

    def connect(self) -> None:
        """Starts a connect cycle in the background.

        Returns as soon as the network loop is scheduled. The outcome is
        reported through the on-connect callback, or through on-error
        followed by on-disconnect.

        Raises:
            AlreadyConnectedError: If the handle is not disconnected.
            TaskManagerError: If the background event loop is unavailable.
        """
        if self._state_machine.current() is not ConnectionState.DISCONNECTED:
            raise AlreadyConnectedError()

        loop = self._task_manager.get_loop()
        channel = CommandChannel(loop)
        network_loop = NetworkLoop(self._config, self._transport, self._state_machine, channel, self._dispatcher)

        with self._lock:
            try:
                self._state_machine.transition(StateEvent.BEGIN_CONNECT)
            except InvalidTransitionError as e:
                raise AlreadyConnectedError() from e
            previous = self._cycle.network_loop
            self._cycle.channel = channel
            self._cycle.network_loop = network_loop
            self._cycle.task = None

        if previous is not None and previous.finished.is_set():
            previous = None

        logger.info(f"Connecting to {self._config.endpoint}.")
        try:
            task = self._task_manager.submit_task(network_loop.run(previous=previous))
        except TaskManagerError as e:
            logger.error(f"Could not start the network loop for {self._config.endpoint}: {e}")
            channel.close()
            self._state_machine.transition(StateEvent.FAILED, reason=str(e))
            raise

        with self._lock:
            if self._cycle.network_loop is network_loop:
                self._cycle.task = task

    def disconnect(self) -> None:
        """Asks the network loop to close the connection.

        Returns immediately; on-disconnect fires once the connection is closed.
        Commands sent before this call are delivered first.

        Raises:
            NotConnectedError: If the handle is disconnected or already
                disconnecting.
        """
        with self._lock:
            channel = self._cycle.channel
        if channel is None or self._state_machine.current() is ConnectionState.DISCONNECTED:
            raise NotConnectedError("Cannot disconnect: the connection is not active.")
        try:
            channel.submit(DisconnectCommand())
        except ChannelClosedError as e:
            raise NotConnectedError("Cannot disconnect: the connection is already closing.", original_exception=e) from e
        channel.close()
        logger.info(f"Disconnect requested for {self._config.endpoint}.")

    def send(self, text: str) -> None:
        """Queues a text message for the peer.

        Args:
            text (str): The message to send.

        Raises:
            NotConnectedError: If the handle is not connected.
            TypeError: If `text` is not a string.
        """
        if not isinstance(text, str):
            raise TypeError(f"send() expects a str, got {type(text).__name__}.")
        with self._lock:
            channel = self._cycle.channel
        if channel is None or self._state_machine.current() is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"Cannot send message, not connected. State: {self.state.name}")
        try:
            channel.submit(SendCommand(text))
        except ChannelClosedError as e:
            raise NotConnectedError("Cannot send message, the connection is closing.", original_exception=e) from e

    def join(self, timeout: Optional[float] = None) -> bool:
        """Waits for the current connect cycle to finish.

        From the background loop thread itself this never blocks.

        Args:
            timeout (Optional[float]): Seconds to wait, or `None` to wait forever.

        Returns:
            bool: True if no cycle is running any more.
        """
        with self._lock:
            network_loop = self._cycle.network_loop
        if network_loop is None:
            return True
        if self._task_manager.is_loop_thread():
            return network_loop.finished.is_set()
        return network_loop.finished.wait(timeout)

    def close(self, timeout: Optional[float] = _DEFAULT_CLOSE_TIMEOUT_SECONDS) -> None:
        """Disconnects if needed and waits for the network loop to end.

        If the loop does not finish within `timeout` it is cancelled. Called
        from a callback, this only requests the disconnect.
        """
        try:
            self.disconnect()
        except NotConnectedError:
            pass
        if self._task_manager.is_loop_thread() or self.join(timeout):
            return

        with self._lock:
            task = self._cycle.task
        if task is not None:
            logger.warning(f"Network loop for {self._config.endpoint} did not stop within {timeout}s; cancelling it.")
            self._task_manager.call_soon_threadsafe(task.cancel)
            self.join(timeout)

    def __enter__(self) -> "ConnectionHandle":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    # --- Callback registration ---

    def on_connect(self, handler: Optional[LifecycleHandlerType]) -> None:
        """Sets the handler called once the connection is established."""
        self._callbacks.set(EventKind.CONNECTED, handler)

    def on_disconnect(self, handler: Optional[LifecycleHandlerType]) -> None:
        """Sets the handler called once at the end of every connect cycle."""
        self._callbacks.set(EventKind.DISCONNECTED, handler)

    def on_message(self, handler: Optional[TextHandlerType]) -> None:
        """Sets the handler called with the text of each incoming message."""
        self._callbacks.set(EventKind.MESSAGE, handler)

    def on_error(self, handler: Optional[TextHandlerType]) -> None:
        """Sets the handler called with a description of each asynchronous failure."""
        self._callbacks.set(EventKind.ERROR, handler)

    def set_listener(self, listener: ConnectionListener) -> None:
        """Registers all four callbacks from a `ConnectionListener`."""
        self._callbacks.set_listener(listener)

    def __repr__(self) -> str:
        return f"<ConnectionHandle endpoint={self._config.endpoint!r} state={self.state.name}>"


class ConnectionBuilder:
    """Builds `ConnectionHandle` instances.

    Example:
        >>> handle = (ConnectionBuilder("wss://example.org/socket")
        ...           .with_timeout(3000)
        ...           .with_interval(500)
        ...           .build())
    """

    def __init__(self, endpoint: str):
        """Starts a builder for `endpoint` with default timings.

        Args:
            endpoint (str): The WebSocket URL ("ws://..." or "wss://...").
        """
        self._endpoint = endpoint
        self._timeout_ms = DEFAULT_TIMEOUT_MS
        self._interval_ms = DEFAULT_INTERVAL_MS
        self._transport: Optional[Transport] = None
        self._task_manager: Optional[TaskManager] = None

    def with_timeout(self, milliseconds: int) -> "ConnectionBuilder":
        """Sets the connect timeout in milliseconds."""
        self._timeout_ms = milliseconds
        return self

    def with_interval(self, milliseconds: int) -> "ConnectionBuilder":
        """Sets the keep-alive ping interval in milliseconds (0 disables pings)."""
        self._interval_ms = milliseconds
        return self

    def with_transport(self, transport: Transport) -> "ConnectionBuilder":
        """Uses `transport` instead of the default `WebSocketTransport`."""
        self._transport = transport
        return self

    def with_task_manager(self, task_manager: TaskManager) -> "ConnectionBuilder":
        """Runs the handle's network loops on `task_manager` instead of the shared one."""
        self._task_manager = task_manager
        return self

    def build(self) -> ConnectionHandle:
        """Creates a disconnected handle.

        Raises:
            ValueError: If the endpoint or timings are invalid.
        """
        config = ConnectionConfig(self._endpoint, timeout_ms=self._timeout_ms, interval_ms=self._interval_ms)
        return ConnectionHandle(config, transport=self._transport, task_manager=self._task_manager)
