"""In-memory transport doubles for exercising easyws without a network."""
import asyncio
import threading
from typing import List, Optional, Tuple

from easyws.core.exceptions import TransportClosedError
from easyws.core.transport import Transport, TransportConnection, TransportEvent, TransportEventKind


class FakeConnection(TransportConnection):
    """A transport connection whose peer is driven by the test.

    Must be created on the event loop it will be used from (the fake
    transport does this inside `open()`).
    """

    def __init__(self, endpoint: str, log: List[Tuple]):
        self.endpoint = endpoint
        self.log = log
        self.closed = threading.Event()
        self.send_error: Optional[Exception] = None
        self.close_hangs = False
        self._loop = asyncio.get_running_loop()
        self._events: asyncio.Queue = asyncio.Queue()

    def push(self, event: TransportEvent) -> None:
        """Delivers an event as if it came from the peer. Callable from any thread."""
        try:
            if asyncio.get_running_loop() is self._loop:
                self._events.put_nowait(event)
                return
        except RuntimeError:
            pass
        self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    def server_send(self, text: str) -> None:
        self.push(TransportEvent.message(text))

    def server_error(self, description: str) -> None:
        self.push(TransportEvent.error(description))

    def server_close(self, reason: str = "peer closed") -> None:
        self.closed.set()
        self.push(TransportEvent.closed(reason))

    async def next_event(self) -> TransportEvent:
        event = await self._events.get()
        if event.kind is TransportEventKind.CLOSED:
            # Every later read sees the close as well.
            self._events.put_nowait(event)
        return event

    async def send(self, text: str) -> None:
        if self.closed.is_set():
            raise TransportClosedError(url=self.endpoint)
        if self.send_error is not None:
            raise self.send_error
        self.log.append(("send", text))

    async def close(self) -> None:
        if self.closed.is_set():
            return
        if self.close_hangs:
            await asyncio.Event().wait()
        self.log.append(("close",))
        self.closed.set()
        self._events.put_nowait(TransportEvent.closed("client close"))


class FakeTransport(Transport):
    """Hands out `FakeConnection`s, or fails to open in a scripted way.

    Args:
        open_error: Raised from `open()` instead of connecting.
        hang: If True, `open()` never completes, so the caller's timeout fires.
        hold_open: If given, `open()` does not complete until this event is set.
    """

    def __init__(self, open_error: Optional[Exception] = None, hang: bool = False,
                 hold_open: Optional[threading.Event] = None):
        self.open_error = open_error
        self.hang = hang
        self.hold_open = hold_open
        self.log: List[Tuple] = []
        self.connections: List[FakeConnection] = []
        self.open_calls: List[Tuple] = []
        self.opened = threading.Event()

    @property
    def connection(self) -> FakeConnection:
        """The most recently opened connection."""
        return self.connections[-1]

    async def open(self, endpoint: str, timeout: float, ping_interval: Optional[float]) -> TransportConnection:
        self.open_calls.append((endpoint, timeout, ping_interval))
        if self.hang:
            await asyncio.Event().wait()
        if self.hold_open is not None:
            while not self.hold_open.is_set():
                await asyncio.sleep(0.01)
        if self.open_error is not None:
            raise self.open_error
        connection = FakeConnection(endpoint, self.log)
        self.connections.append(connection)
        self.opened.set()
        return connection
