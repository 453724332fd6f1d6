"""Exceptions raised by the easyws connection machinery.

All errors derive from `EasyWsError`. They fall into three groups:

- Misuse of a `ConnectionHandle` (`NotConnectedError`, `AlreadyConnectedError`).
  These are raised synchronously from the offending call.
- Internal plumbing failures (`ChannelClosedError`, `InvalidTransitionError`,
  `TaskManagerError` and its subclasses).
- Transport failures (`TransportError` and its subclasses). These happen on the
  background loop and reach user code only as text passed to the on-error
  callback, never as a return value.
"""

from typing import Any, List, Optional


def _join_message_parts(parts: List[str]) -> str:
    return ". ".join(part.rstrip(".") for part in parts)


class EasyWsError(Exception):
    """Base class for all errors raised by easyws."""
    def __init__(self, message: str, original_exception: Optional[BaseException] = None):
        super().__init__(message)
        self.original_exception = original_exception

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.original_exception:
            parts.append(f"Original Exception: {type(self.original_exception).__name__}: {self.original_exception}")
        return _join_message_parts(parts)


# --- Handle misuse ---

class NotConnectedError(EasyWsError):
    """Raised when an operation needs an active connection that isn't there.

    `disconnect()` raises it while the handle is disconnected, and `send()`
    raises it unless the handle is fully connected.
    """
    def __init__(self, message: str = "The connection is not active.", original_exception: Optional[BaseException] = None):
        super().__init__(message, original_exception=original_exception)


class AlreadyConnectedError(EasyWsError):
    """Raised by `connect()` while a connect cycle is already in progress."""
    def __init__(self, message: str = "A connection is already active or being established."):
        super().__init__(message)


# --- Internal plumbing ---

class ChannelClosedError(EasyWsError):
    """Raised when a command is submitted to a closed `CommandChannel`.

    `ConnectionHandle` turns this into `NotConnectedError` before it reaches
    the caller.
    """
    def __init__(self, message: str = "The command channel is closed."):
        super().__init__(message)


class InvalidTransitionError(EasyWsError):
    """Raised when the connection state machine is asked for an illegal move.

    Attributes:
        state (Any): The state the machine was in.
        event (Any): The event that was rejected.
    """
    def __init__(self, state: Any, event: Any):
        super().__init__(f"Cannot apply {event} while in state {state}.")
        self.state = state
        self.event = event


# --- Transport failures ---

class TransportError(EasyWsError):
    """Base class for failures reported by the transport collaborator.

    Attributes:
        url (Optional[str]): The endpoint involved, if known.
    """
    def __init__(self, message: str, url: Optional[str] = None, original_exception: Optional[BaseException] = None):
        super().__init__(message, original_exception=original_exception)
        self.url = url

    def __str__(self) -> str:
        parts = [Exception.__str__(self)]
        if self.url:
            parts.append(f"URL: {self.url}")
        if self.original_exception:
            parts.append(f"Original Exception: {type(self.original_exception).__name__}: {self.original_exception}")
        return _join_message_parts(parts)


class TransportOpenError(TransportError):
    """Raised when the transport cannot open a connection to the endpoint."""
    pass


class ConnectRefusedError(TransportOpenError):
    """Raised when the remote endpoint actively refuses the connection."""
    def __init__(self, url: str, original_exception: Optional[BaseException] = None):
        super().__init__(f"Connection was refused by the server at {url}.", url=url, original_exception=original_exception)


class ConnectTimeoutError(TransportOpenError):
    """Raised when opening the connection takes longer than the configured timeout.

    Attributes:
        timeout_seconds (Optional[float]): The timeout that expired.
    """
    def __init__(self, url: str, timeout_seconds: Optional[float] = None, original_exception: Optional[BaseException] = None):
        message = f"Connection attempt to {url} timed out"
        if timeout_seconds is not None:
            message += f" after {timeout_seconds:.2f} seconds."
        else:
            message += "."
        super().__init__(message, url=url, original_exception=original_exception)
        self.timeout_seconds = timeout_seconds


class TransportClosedError(TransportError):
    """Raised when the transport connection is no longer usable.

    Attributes:
        reason (Optional[str]): Why the connection went away, if known.
    """
    def __init__(self, message: str = "The transport connection is closed.", reason: Optional[str] = None,
                 url: Optional[str] = None, original_exception: Optional[BaseException] = None):
        full_message = message
        if reason:
            full_message += f" Reason: {reason}"
        super().__init__(full_message, url=url, original_exception=original_exception)
        self.reason = reason


# --- TaskManager ---

class TaskManagerError(EasyWsError):
    """Base class for failures of the background event loop thread."""
    pass


class LoopNotRunningError(TaskManagerError, RuntimeError):
    """Raised when the background event loop is needed but not running."""
    def __init__(self, message: str = "The TaskManager's event loop is not running."):
        super().__init__(message)


class TaskSubmissionError(TaskManagerError):
    """Raised when a coroutine cannot be scheduled on the background loop."""
    def __init__(self, message: str = "Failed to submit task to the TaskManager.", original_exception: Optional[BaseException] = None):
        super().__init__(message, original_exception=original_exception)
