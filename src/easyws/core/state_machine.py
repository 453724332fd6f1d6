"""The connection lifecycle state machine.

`ConnectionStateMachine` holds the `ConnectionState` of one handle and only
allows these moves:

    DISCONNECTED --BEGIN_CONNECT-->      CONNECTING
    CONNECTING   --HANDSHAKE_STARTED-->  HANDSHAKING
    HANDSHAKING  --HANDSHAKE_COMPLETE--> CONNECTED
    (any state but DISCONNECTED) --CLOSED | FAILED--> DISCONNECTED

Anything else raises `InvalidTransitionError`. The network loop drives the
machine; the handle only claims it with `BEGIN_CONNECT` and otherwise reads
`current()`. Both sides may run on different threads, so every access goes
through a lock.
"""

import logging
import threading
from enum import Enum, auto
from typing import Dict, Optional, Tuple

from .exceptions import InvalidTransitionError
from .status import ConnectionState

logger = logging.getLogger(__name__)


class StateEvent(Enum):
    """Events that move a `ConnectionStateMachine` between states."""
    BEGIN_CONNECT = auto()
    HANDSHAKE_STARTED = auto()
    HANDSHAKE_COMPLETE = auto()
    CLOSED = auto()
    FAILED = auto()

    def __str__(self) -> str:
        return self.name


_FORWARD_TRANSITIONS: Dict[Tuple[ConnectionState, StateEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, StateEvent.BEGIN_CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, StateEvent.HANDSHAKE_STARTED): ConnectionState.HANDSHAKING,
    (ConnectionState.HANDSHAKING, StateEvent.HANDSHAKE_COMPLETE): ConnectionState.CONNECTED,
}

_TERMINAL_EVENTS = (StateEvent.CLOSED, StateEvent.FAILED)


class ConnectionStateMachine:
    """Tracks the lifecycle of one logical connection.

    Attributes:
        last_failure (Optional[str]): The reason given with the most recent
            `FAILED` event, or `None` if the last cycle did not fail.
    """

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()
        self.last_failure: Optional[str] = None

    def current(self) -> ConnectionState:
        """Returns the current state."""
        with self._lock:
            return self._state

    def transition(self, event: StateEvent, reason: Optional[str] = None) -> ConnectionState:
        """Applies `event` and returns the new state.

        Args:
            event (StateEvent): The event to apply.
            reason (Optional[str]): Why the connection failed. Only recorded
                for `StateEvent.FAILED`.

        Returns:
            ConnectionState: The state after the transition.

        Raises:
            InvalidTransitionError: If `event` is not legal in the current state.
        """
        with self._lock:
            previous = self._state
            if event in _TERMINAL_EVENTS:
                if previous is ConnectionState.DISCONNECTED:
                    raise InvalidTransitionError(previous, event)
                new_state = ConnectionState.DISCONNECTED
            else:
                new_state = _FORWARD_TRANSITIONS.get((previous, event))
                if new_state is None:
                    raise InvalidTransitionError(previous, event)

            if event is StateEvent.BEGIN_CONNECT:
                self.last_failure = None
            elif event is StateEvent.FAILED:
                self.last_failure = reason
            self._state = new_state

        logger.debug(f"Connection state changed from {previous.name} to {new_state.name} on {event.name}"
                     + (f" (reason: {reason})" if reason else ""))
        return new_state

    def __repr__(self) -> str:
        return f"<ConnectionStateMachine state={self.current().name}>"
