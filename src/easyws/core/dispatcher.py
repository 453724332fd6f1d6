"""Delivers connection events to user callbacks.

The network loop reports what happens on the connection as `ConnectionEvent`
objects and hands them to `EventDispatcher.dispatch()`. The dispatcher looks
up the matching handler in a `CallbackSet` and invokes it in-line on the
loop's own thread, so handlers never run concurrently with one another.

Handlers may be plain functions or coroutine functions; coroutine results are
awaited before `dispatch()` returns. An event with no registered handler is
dropped. A handler that raises is logged and reported through the on-error
handler, and never disturbs the network loop.
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)


# Handlers can be either synchronous functions or coroutine functions.

LifecycleHandlerType = Callable[[], Union[None, Awaitable[None]]]
"""Type alias for the on-connect and on-disconnect handlers."""

TextHandlerType = Callable[[str], Union[None, Awaitable[None]]]
"""Type alias for the on-message and on-error handlers, which receive text."""


class EventKind(Enum):
    """The kinds of event surfaced to user callbacks."""
    CONNECTED = auto()
    DISCONNECTED = auto()
    MESSAGE = auto()
    ERROR = auto()


@dataclass(frozen=True)
class ConnectionEvent:
    """An event raised by the network loop for the user's callbacks.

    Attributes:
        kind (EventKind): Which callback slot the event targets.
        text (Optional[str]): The message text for `MESSAGE`, the error
            description for `ERROR`, and `None` otherwise.
    """
    kind: EventKind
    text: Optional[str] = None

    @classmethod
    def connected(cls) -> "ConnectionEvent":
        return cls(EventKind.CONNECTED)

    @classmethod
    def disconnected(cls) -> "ConnectionEvent":
        return cls(EventKind.DISCONNECTED)

    @classmethod
    def message(cls, text: str) -> "ConnectionEvent":
        return cls(EventKind.MESSAGE, text)

    @classmethod
    def error(cls, text: str) -> "ConnectionEvent":
        return cls(EventKind.ERROR, text)


class ConnectionListener:
    """Receives every callback of a connection through one object.

    Subclass it and override the methods you care about, then pass an instance
    to `ConnectionHandle.set_listener()`. The default methods do nothing.
    All methods are called on the background event loop thread.
    """

    def on_connect(self) -> None:
        """Called once the connection is established."""
        pass

    def on_disconnect(self) -> None:
        """Called once when a connect cycle ends, for whatever reason."""
        pass

    def on_message(self, text: str) -> None:
        """Called for every text message received."""
        pass

    def on_error(self, text: str) -> None:
        """Called with a description of an asynchronous failure."""
        pass


class CallbackSet:
    """Holds at most one handler per `EventKind`.

    Registration happens on the caller's thread while reads happen on the
    loop thread, so all access is guarded by a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[EventKind, Callable[..., Any]] = {}

    def set(self, kind: EventKind, handler: Optional[Callable[..., Any]]) -> None:
        """Registers `handler` for `kind`, replacing any previous one.

        Passing `None` clears the slot.
        """
        if handler is not None and not callable(handler):
            raise TypeError(f"Handler for {kind.name} must be callable, got {type(handler).__name__}.")
        with self._lock:
            if handler is None:
                self._handlers.pop(kind, None)
            else:
                self._handlers[kind] = handler

    def get(self, kind: EventKind) -> Optional[Callable[..., Any]]:
        """Returns the handler registered for `kind`, or `None`."""
        with self._lock:
            return self._handlers.get(kind)

    def set_listener(self, listener: ConnectionListener) -> None:
        """Registers all four methods of `listener` in one step."""
        with self._lock:
            self._handlers[EventKind.CONNECTED] = listener.on_connect
            self._handlers[EventKind.DISCONNECTED] = listener.on_disconnect
            self._handlers[EventKind.MESSAGE] = listener.on_message
            self._handlers[EventKind.ERROR] = listener.on_error


class EventDispatcher:
    """Invokes the handler registered for each `ConnectionEvent`.

    Must only be driven from one task at a time, which is the network loop of
    the owning handle.
    """

    def __init__(self, callbacks: CallbackSet):
        self._callbacks = callbacks

    @property
    def callbacks(self) -> CallbackSet:
        return self._callbacks

    async def dispatch(self, event: ConnectionEvent) -> None:
        """Delivers `event` to its handler, if one is registered."""
        handler = self._callbacks.get(event.kind)
        if handler is None:
            logger.debug(f"No handler registered for {event.kind.name}; event dropped.")
            return
        args = () if event.text is None else (event.text,)
        try:
            await self._invoke(handler, *args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            handler_name = getattr(handler, '__name__', 'unknown_handler')
            logger.exception(f"An error occurred inside the {event.kind.name} handler ('{handler_name}'): {e}")
            if event.kind is not EventKind.ERROR:
                await self._report_handler_failure(handler_name, e)

    async def _report_handler_failure(self, handler_name: str, error: Exception) -> None:
        error_handler = self._callbacks.get(EventKind.ERROR)
        if error_handler is None:
            return
        try:
            await self._invoke(error_handler, f"Handler '{handler_name}' raised {type(error).__name__}: {error}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"The ERROR handler failed while reporting a handler failure: {e}")

    @staticmethod
    async def _invoke(handler: Callable[..., Any], *args: Any) -> None:
        result = handler(*args)
        if inspect.isawaitable(result):
            await result
