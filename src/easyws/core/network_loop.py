"""The background coroutine that owns one connect cycle.

A `NetworkLoop` is created by `ConnectionHandle.connect()` and run as a task on
the `TaskManager`'s event loop. It:

1. opens the transport within the configured timeout,
2. walks the state machine through HANDSHAKING to CONNECTED and reports
   `Connected`,
3. reacts to whichever comes first, a transport event or a queued command,
   until the connection is closed by either side,
4. tears everything down, returns the state machine to DISCONNECTED and reports
   `Disconnected` exactly once.

The loop is the only code that touches the transport connection, so the
connection itself needs no locking.
"""

import asyncio
import logging
import threading
from typing import Optional, Set

from ..config import ConnectionConfig
from .command_channel import Command, CommandChannel, DisconnectCommand, SendCommand
from .dispatcher import ConnectionEvent, EventDispatcher
from .exceptions import (
    ConnectTimeoutError,
    TransportClosedError,
    TransportError,
    TransportOpenError,
)
from .state_machine import ConnectionStateMachine, StateEvent
from .transport import Transport, TransportConnection, TransportEvent, TransportEventKind

logger = logging.getLogger(__name__)


class NetworkLoop:
    """Drives a single connect cycle from open to teardown.

    Attributes:
        finished (threading.Event): Set once teardown is complete and
            `Disconnected` has been dispatched. Other threads may wait on it.
    """

    def __init__(self,
                 config: ConnectionConfig,
                 transport: Transport,
                 state_machine: ConnectionStateMachine,
                 channel: CommandChannel,
                 dispatcher: EventDispatcher):
        self._config = config
        self._transport = transport
        self._state_machine = state_machine
        self._channel = channel
        self._dispatcher = dispatcher

        self._connection: Optional[TransportConnection] = None
        self._failure: Optional[str] = None
        self._disconnect_dispatched = False
        # Set once this cycle has returned the state machine to DISCONNECTED.
        # After that the state may already belong to the next cycle.
        self._state_released = False
        self.finished = threading.Event()
        self._finished_async = asyncio.Event()

    async def wait_finished(self) -> None:
        """Waits on the event loop until this cycle has been torn down."""
        await self._finished_async.wait()

    async def run(self, previous: Optional["NetworkLoop"] = None) -> None:
        """Runs the connect cycle to completion.

        The caller must already have applied `BEGIN_CONNECT` for this cycle.

        Args:
            previous (Optional[NetworkLoop]): The handle's previous cycle, if it
                may still be tearing down. It is allowed to finish first.
        """
        endpoint = self._config.endpoint
        try:
            if previous is not None:
                await previous.wait_finished()
            logger.info(f"Network loop starting for {endpoint}.")
            if await self._open():
                await self._serve()
        except asyncio.CancelledError:
            logger.info(f"Network loop for {endpoint} was cancelled.")
            raise
        finally:
            await self._teardown()
            logger.info(f"Network loop for {endpoint} finished.")

    async def _open(self) -> bool:
        """Opens the transport and completes the handshake states.

        Returns:
            bool: True once CONNECTED, False if the attempt failed.
        """
        endpoint = self._config.endpoint
        timeout = self._config.timeout_seconds
        try:
            self._connection = await asyncio.wait_for(
                self._transport.open(endpoint, timeout, self._config.interval_seconds),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            await self._fail(ConnectTimeoutError(endpoint, timeout, e))
            return False
        except TransportError as e:
            await self._fail(e)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error while opening {endpoint}: {e}")
            await self._fail(TransportOpenError(f"Unexpected error during connection: {e}", url=endpoint, original_exception=e))
            return False

        if self._channel.closed:
            logger.info(f"Disconnect was requested while connecting to {endpoint}; closing.")
            return False

        self._state_machine.transition(StateEvent.HANDSHAKE_STARTED)
        self._state_machine.transition(StateEvent.HANDSHAKE_COMPLETE)
        logger.info(f"Connected to {endpoint}.")
        await self._dispatcher.dispatch(ConnectionEvent.connected())
        return True

    async def _fail(self, error: TransportError) -> None:
        logger.error(f"Connection to {self._config.endpoint} failed: {error}")
        self._failure = str(error)
        self._release_state(StateEvent.FAILED)
        await self._dispatcher.dispatch(ConnectionEvent.error(str(error)))

    def _release_state(self, event: StateEvent) -> None:
        self._state_released = True
        self._state_machine.transition(event, reason=self._failure)

    async def _serve(self) -> None:
        """Waits on the transport and the command channel until the cycle ends."""
        event_task: Optional[asyncio.Task] = None
        command_task: Optional[asyncio.Task] = None
        try:
            while True:
                if event_task is None:
                    event_task = asyncio.create_task(self._connection.next_event())
                if command_task is None:
                    command_task = asyncio.create_task(self._channel.next())

                done, _ = await asyncio.wait({event_task, command_task}, return_when=asyncio.FIRST_COMPLETED)

                if event_task in done:
                    transport_event = event_task.result()
                    event_task = None
                    if not await self._handle_transport_event(transport_event):
                        return

                if command_task in done:
                    command = command_task.result()
                    command_task = None
                    if not await self._handle_command(command):
                        return
                    while (command := self._channel.poll()) is not None:
                        if not await self._handle_command(command):
                            return
        finally:
            pending: Set[asyncio.Task] = {task for task in (event_task, command_task) if task is not None and not task.done()}
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _handle_transport_event(self, event: TransportEvent) -> bool:
        """Reports a transport event. Returns False when the loop must stop."""
        if event.kind is TransportEventKind.MESSAGE:
            await self._dispatcher.dispatch(ConnectionEvent.message(event.text))
            return True
        if event.kind is TransportEventKind.ERROR:
            await self._dispatcher.dispatch(ConnectionEvent.error(event.text))
            return True
        logger.info(f"Connection to {self._config.endpoint} closed by the peer"
                    + (f": {event.text}" if event.text else "."))
        return False

    async def _handle_command(self, command: Optional[Command]) -> bool:
        """Executes one command. Returns False when the loop must stop."""
        if isinstance(command, SendCommand):
            logger.debug(f"Sending {len(command.text)} characters to {self._config.endpoint}.")
            try:
                await self._connection.send(command.text)
            except TransportClosedError as e:
                self._failure = str(e)
                await self._dispatcher.dispatch(ConnectionEvent.error(str(e)))
                return False
            except TransportError as e:
                await self._dispatcher.dispatch(ConnectionEvent.error(str(e)))
            return True

        if command is None:
            logger.debug("Command channel closed without a disconnect command; closing the connection.")
        elif not isinstance(command, DisconnectCommand): # pragma: no cover
            logger.warning(f"Ignoring unknown command {command!r}.")
            return True
        logger.info(f"Disconnect requested for {self._config.endpoint}.")
        await self._close_connection()
        return False

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except TransportError as e:
            logger.warning(f"Error while closing connection to {self._config.endpoint}: {e}")

    async def _teardown(self) -> None:
        """Releases the cycle's resources and reports `Disconnected` once."""
        try:
            self._channel.close()
            await self._close_connection()
            if not self._state_released:
                self._release_state(StateEvent.FAILED if self._failure is not None else StateEvent.CLOSED)
            if not self._disconnect_dispatched:
                self._disconnect_dispatched = True
                await self._dispatcher.dispatch(ConnectionEvent.disconnected())
        finally:
            self._finished_async.set()
            self.finished.set()
