"""Interactive command-line client built on `easyws`.

Connects to a WebSocket endpoint, sends every line typed on stdin as a text
message and prints whatever the server sends back. Typing `/quit` or closing
stdin (Ctrl+D) disconnects.

Usage:
    python -m easyws ws://localhost:8765 [--timeout MS] [--interval MS] [-v]
"""
import argparse
import logging
import sys
import threading
from typing import List, Optional

from . import ConnectionBuilder, ConnectionListener, NotConnectedError
from .config import DEFAULT_INTERVAL_MS, DEFAULT_TIMEOUT_MS

logger = logging.getLogger("easyws.cli")

_CONNECT_WAIT_SECONDS = 30.0
_QUIT_COMMAND = "/quit"


class _ConsoleListener(ConnectionListener):
    """Prints connection events and tracks when the cycle ends."""

    def __init__(self):
        self.connected = threading.Event()
        self.finished = threading.Event()

    def on_connect(self) -> None:
        print("[connected]", flush=True)
        self.connected.set()

    def on_disconnect(self) -> None:
        print("[disconnected]", flush=True)
        self.finished.set()
        # Unblock a waiter if the connection never came up.
        self.connected.set()

    def on_message(self, text: str) -> None:
        print(f"< {text}", flush=True)

    def on_error(self, text: str) -> None:
        print(f"[error] {text}", file=sys.stderr, flush=True)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="easyws", description="Send stdin lines to a WebSocket server and print replies.")
    parser.add_argument("url", help="WebSocket URL, e.g. ws://localhost:8765")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="connect timeout in milliseconds")
    parser.add_argument("--interval", type=int, default=DEFAULT_INTERVAL_MS, help="keep-alive ping interval in milliseconds (0 disables)")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output to stderr")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s",
    )

    try:
        handle = ConnectionBuilder(args.url).with_timeout(args.timeout).with_interval(args.interval).build()
    except ValueError as e:
        print(f"easyws: {e}", file=sys.stderr)
        return 2

    listener = _ConsoleListener()
    handle.set_listener(listener)

    with handle:
        handle.connect()
        listener.connected.wait(_CONNECT_WAIT_SECONDS)
        if not handle.is_connected():
            return 1

        for line in sys.stdin:
            line = line.rstrip("\n")
            if line == _QUIT_COMMAND:
                break
            try:
                handle.send(line)
            except NotConnectedError:
                logger.info("Connection ended while reading input.")
                break
    return 0


if __name__ == "__main__":
    sys.exit(main())
