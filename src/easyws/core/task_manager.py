"""Runs an asyncio event loop in a background thread.

easyws exposes a synchronous API: `connect()`, `send()` and `disconnect()` are
called from ordinary threads and never block on the network. The network loops
behind those calls are coroutines, so they need an event loop that keeps
running regardless of what the caller's thread is doing.

`TaskManager` provides that loop. It starts a daemon thread on first use,
creates a fresh event loop inside it, and lets other threads schedule
coroutines on it with `submit_task()`. All network loops and all user
callbacks run on this one thread.
"""

import asyncio
import threading
import concurrent.futures
import logging
from typing import Any, Callable, Coroutine, Optional, Set

from .exceptions import LoopNotRunningError, TaskSubmissionError, TaskManagerError

logger = logging.getLogger(__name__)

_LOOP_STARTUP_TIMEOUT_SECONDS = 10.0
_TASK_REF_TIMEOUT_SECONDS = 5.0


class TaskManager:
    """Owns one asyncio event loop running in a dedicated daemon thread.

    The loop is started lazily by `ensure_loop_running()` (or anything that
    needs it) and keeps running until `stop_loop()` is called. Tasks that are
    still active at that point are cancelled and awaited before the loop
    closes, so their cleanup code runs.
    """

    def __init__(self, thread_name: str = "EasyWsAsyncLoop"):
        """Initializes the TaskManager without starting its thread.

        Args:
            thread_name (str): Name given to the background thread.
        """
        self._thread_name = thread_name
        # Guards _loop, _loop_thread and _stop_requested across threads.
        self._lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._stop_requested: Optional[asyncio.Event] = None

        self._started = threading.Event()
        self._startup_error: Optional[BaseException] = None
        self._stopped = threading.Event()

        # Only touched from the loop thread.
        self._active_tasks: Set[asyncio.Task] = set()

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            stop_requested = asyncio.Event()
            with self._lock:
                self._loop = loop
                self._stop_requested = stop_requested
            logger.info(f"Event loop thread '{self._thread_name}' started.")
            # Readiness is signalled from inside the running loop.
            loop.call_soon(self._started.set)
            loop.run_until_complete(stop_requested.wait())
            logger.debug("Event loop received shutdown signal.")
        except Exception as e:
            logger.exception(f"Event loop thread '{self._thread_name}' failed: {e}")
            if not self._started.is_set():
                self._startup_error = e
                self._started.set()
        finally:
            try:
                loop.run_until_complete(self._cancel_active_tasks())
            finally:
                loop.close()
                with self._lock:
                    if self._loop is loop:
                        self._loop = None
                        self._stop_requested = None
                logger.info(f"Event loop thread '{self._thread_name}' stopped.")
                self._stopped.set()

    async def _cancel_active_tasks(self) -> None:
        pending = [task for task in self._active_tasks if not task.done()]
        self._active_tasks.clear()
        if pending:
            logger.debug(f"Cancelling {len(pending)} active tasks.")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.get_running_loop().shutdown_asyncgens()

    def ensure_loop_running(self) -> None:
        """Starts the background thread and its loop unless they already run.

        Raises:
            TaskManagerError: If the loop fails to start in time.
        """
        with self._lock:
            if self.is_loop_running():
                return
            self._started.clear()
            self._stopped.clear()
            self._startup_error = None
            logger.info(f"Starting event loop thread '{self._thread_name}'.")
            self._loop_thread = threading.Thread(target=self._thread_main, daemon=True, name=self._thread_name)
            self._loop_thread.start()

        if not self._started.wait(timeout=_LOOP_STARTUP_TIMEOUT_SECONDS):
            raise TaskManagerError(f"Timeout ({_LOOP_STARTUP_TIMEOUT_SECONDS}s) waiting for event loop thread to initialize.")
        if self._startup_error is not None:
            raise TaskManagerError("Event loop thread failed during startup.", original_exception=self._startup_error)

    def is_loop_running(self) -> bool:
        """Checks whether the background loop is alive and running."""
        with self._lock:
            return bool(self._loop_thread and self._loop_thread.is_alive() and self._loop and self._loop.is_running())

    def is_loop_thread(self) -> bool:
        """True when called from the background loop's own thread."""
        with self._lock:
            thread = self._loop_thread
        return thread is not None and thread is threading.current_thread()

    def get_loop(self) -> asyncio.AbstractEventLoop:
        """Returns the background loop, starting it first if needed.

        Raises:
            LoopNotRunningError: If the loop was stopped again before it
                could be returned.
        """
        self.ensure_loop_running()
        with self._lock:
            if self._loop is None:
                raise LoopNotRunningError()
            return self._loop

    def _track_task(self, task: asyncio.Task) -> None:
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)

    def _create_task_on_loop(self, coro: Coroutine[Any, Any, Any], result: concurrent.futures.Future) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except TypeError as e:
            result.set_exception(e)
            return
        self._track_task(task)
        result.set_result(task)

    def submit_task(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedules `coro` on the background loop and returns its task.

        Safe to call from any thread. From a foreign thread this waits only
        for the task object to be created, not for the coroutine to run.

        Raises:
            TaskSubmissionError: If the task cannot be created.
        """
        loop = self.get_loop()
        if self.is_loop_thread():
            task = loop.create_task(coro)
            self._track_task(task)
            return task

        result: concurrent.futures.Future = concurrent.futures.Future()
        try:
            loop.call_soon_threadsafe(self._create_task_on_loop, coro, result)
        except RuntimeError as e:
            coro.close()
            raise TaskSubmissionError("Event loop closed before the task could be scheduled.", original_exception=e) from e
        try:
            return result.result(timeout=_TASK_REF_TIMEOUT_SECONDS)
        except concurrent.futures.TimeoutError as e:
            raise TaskSubmissionError(f"Timeout ({_TASK_REF_TIMEOUT_SECONDS}s) waiting for the task to be created.", original_exception=e) from e
        except TypeError as e:
            raise TaskSubmissionError(f"Cannot run {coro!r} as a task.", original_exception=e) from e

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> None:
        """Schedules a plain callback on the background loop, if it runs."""
        with self._lock:
            loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("call_soon_threadsafe: no running event loop, callback dropped.")
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError as e:
            logger.warning(f"Could not schedule callback (loop closing?): {e}")

    def stop_loop(self) -> None:
        """Asks the background loop to shut down. Does not wait."""
        with self._lock:
            loop, stop_requested = self._loop, self._stop_requested
        if loop is None or stop_requested is None or loop.is_closed():
            logger.debug("stop_loop: loop is not running.")
            return
        logger.info("Signalling the event loop to shut down.")
        try:
            loop.call_soon_threadsafe(stop_requested.set)
        except RuntimeError as e:
            logger.warning(f"Could not schedule shutdown (loop closing?): {e}")

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the background thread has finished.

        Args:
            timeout (Optional[float]): Seconds to wait, or `None` to wait forever.

        Returns:
            bool: True if the thread stopped (or was never running).
        """
        with self._lock:
            thread = self._loop_thread
        if thread is None or not thread.is_alive():
            return True
        if not self._stopped.wait(timeout=timeout):
            return False
        thread.join(timeout=timeout)
        with self._lock:
            if self._loop_thread is thread and not thread.is_alive():
                self._loop_thread = None
        return True
