"""The command channel between a `ConnectionHandle` and its network loop.

Commands are produced on the caller's thread and consumed by the network loop
running on the `TaskManager`'s event loop. `CommandChannel` wraps an
`asyncio.Queue` owned by that loop. Producers on other threads hand each
command over with `call_soon_threadsafe`, which runs callbacks in the order
they were scheduled, so every producer's commands arrive in submission order.

Closing the channel stops new submissions, but commands already submitted
are still delivered before the consumer sees the end of the channel.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import ChannelClosedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendCommand:
    """Asks the network loop to send `text` over the transport."""
    text: str


@dataclass(frozen=True)
class DisconnectCommand:
    """Asks the network loop to close the transport and finish the cycle."""
    pass


Command = Union[SendCommand, DisconnectCommand]

# Marks the end of the stream inside the queue.
_END_OF_CHANNEL = object()


class CommandChannel:
    """An ordered multi-producer, single-consumer queue of commands.

    `submit()` and `close()` may be called from any thread. `next()` and
    `poll()` must only be called from the event loop passed to the
    constructor.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        """Initializes the channel.

        Args:
            loop (asyncio.AbstractEventLoop): The event loop the consumer runs on.
        """
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once `close()` has been called."""
        with self._lock:
            return self._closed

    def _enqueue(self, item: object) -> None:
        """Puts `item` on the queue from whichever thread we are on."""
        try:
            if asyncio.get_running_loop() is self._loop:
                self._queue.put_nowait(item)
                return
        except RuntimeError:
            # Not on any event loop thread.
            pass
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def submit(self, command: Command) -> None:
        """Queues a command for the network loop.

        Args:
            command (Command): The command to deliver.

        Raises:
            ChannelClosedError: If the channel has been closed, or its event
                loop is gone.
        """
        with self._lock:
            if self._closed:
                raise ChannelClosedError()
            try:
                self._enqueue(command)
            except RuntimeError as e:
                # call_soon_threadsafe on a closed loop.
                self._closed = True
                raise ChannelClosedError(f"The command channel's event loop is closed: {e}") from e
        logger.debug(f"Submitted command {command!r}")

    def close(self) -> None:
        """Stops accepting commands. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._enqueue(_END_OF_CHANNEL)
            except RuntimeError:
                logger.debug("Command channel closed after its event loop stopped.")

    async def next(self) -> Optional[Command]:
        """Waits for the next command.

        Returns:
            Optional[Command]: The next command, or `None` once the channel is
                closed and every earlier command has been delivered.
        """
        item = await self._queue.get()
        if item is _END_OF_CHANNEL:
            # Keep the marker in place for any later reader.
            self._queue.put_nowait(item)
            return None
        return item

    def poll(self) -> Optional[Command]:
        """Returns the next queued command without waiting, or `None`."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _END_OF_CHANNEL:
            self._queue.put_nowait(item)
            return None
        return item
