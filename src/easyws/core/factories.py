"""Factory functions for the shared core components.

The `TaskManager` is a process-wide singleton: every `ConnectionHandle` that
is not given its own runs its network loop on the same background thread, so
callbacks from all handles are serialized on that thread. Transports are
created on demand.
"""

import logging
import threading
from typing import Optional

from .task_manager import TaskManager
from .websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)

_task_manager_instance: Optional[TaskManager] = None
_task_manager_lock = threading.Lock()


def get_task_manager() -> TaskManager:
    """Gets the shared `TaskManager`, creating it on first use.

    The background thread itself is only started once a task is submitted.

    Returns:
        TaskManager: The process-wide instance.
    """
    global _task_manager_instance
    if _task_manager_instance is None:
        with _task_manager_lock:
            if _task_manager_instance is None:
                logger.info("Creating shared TaskManager instance.")
                _task_manager_instance = TaskManager()
    return _task_manager_instance


def create_websocket_transport() -> WebSocketTransport:
    """Creates the default transport, backed by the `websockets` library."""
    return WebSocketTransport()
