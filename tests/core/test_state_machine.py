import itertools
import threading
import unittest

from easyws.core.exceptions import InvalidTransitionError
from easyws.core.state_machine import ConnectionStateMachine, StateEvent
from easyws.core.status import ConnectionState


class TestConnectionStateMachine(unittest.TestCase):
    """Unit tests for ConnectionStateMachine."""

    def setUp(self):
        self.machine = ConnectionStateMachine()

    def _advance_to(self, target: ConnectionState) -> None:
        path = [
            (StateEvent.BEGIN_CONNECT, ConnectionState.CONNECTING),
            (StateEvent.HANDSHAKE_STARTED, ConnectionState.HANDSHAKING),
            (StateEvent.HANDSHAKE_COMPLETE, ConnectionState.CONNECTED),
        ]
        for event, state in path:
            if self.machine.current() is target:
                return
            self.assertIs(self.machine.transition(event), state)

    def test_initial_state(self):
        self.assertIs(self.machine.current(), ConnectionState.DISCONNECTED)
        self.assertIsNone(self.machine.last_failure)

    def test_full_forward_path(self):
        self._advance_to(ConnectionState.CONNECTED)
        self.assertIs(self.machine.current(), ConnectionState.CONNECTED)

    def test_closed_returns_to_disconnected_from_every_active_state(self):
        for state in (ConnectionState.CONNECTING, ConnectionState.HANDSHAKING, ConnectionState.CONNECTED):
            with self.subTest(state=state):
                machine = ConnectionStateMachine()
                self.machine = machine
                self._advance_to(state)
                self.assertIs(machine.transition(StateEvent.CLOSED), ConnectionState.DISCONNECTED)

    def test_failed_records_reason(self):
        self._advance_to(ConnectionState.HANDSHAKING)
        self.machine.transition(StateEvent.FAILED, reason="handshake rejected")
        self.assertIs(self.machine.current(), ConnectionState.DISCONNECTED)
        self.assertEqual(self.machine.last_failure, "handshake rejected")

    def test_begin_connect_clears_previous_failure(self):
        self._advance_to(ConnectionState.CONNECTING)
        self.machine.transition(StateEvent.FAILED, reason="refused")
        self.machine.transition(StateEvent.BEGIN_CONNECT)
        self.assertIsNone(self.machine.last_failure)

    def test_terminal_events_rejected_when_disconnected(self):
        for event in (StateEvent.CLOSED, StateEvent.FAILED):
            with self.subTest(event=event):
                with self.assertRaises(InvalidTransitionError) as ctx:
                    self.machine.transition(event)
                self.assertIs(ctx.exception.state, ConnectionState.DISCONNECTED)
                self.assertIs(ctx.exception.event, event)
                self.assertIs(self.machine.current(), ConnectionState.DISCONNECTED)

    def test_only_listed_forward_transitions_are_legal(self):
        legal = {
            (ConnectionState.DISCONNECTED, StateEvent.BEGIN_CONNECT),
            (ConnectionState.CONNECTING, StateEvent.HANDSHAKE_STARTED),
            (ConnectionState.HANDSHAKING, StateEvent.HANDSHAKE_COMPLETE),
        }
        forward_events = (StateEvent.BEGIN_CONNECT, StateEvent.HANDSHAKE_STARTED, StateEvent.HANDSHAKE_COMPLETE)
        for state, event in itertools.product(list(ConnectionState), forward_events):
            if (state, event) in legal:
                continue
            with self.subTest(state=state, event=event):
                self.machine = ConnectionStateMachine()
                self._advance_to(state)
                with self.assertRaises(InvalidTransitionError):
                    self.machine.transition(event)
                self.assertIs(self.machine.current(), state)

    def test_concurrent_begin_connect_admits_exactly_one(self):
        successes = []
        failures = []
        barrier = threading.Barrier(8)

        def claim():
            barrier.wait()
            try:
                self.machine.transition(StateEvent.BEGIN_CONNECT)
                successes.append(1)
            except InvalidTransitionError:
                failures.append(1)

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=2)

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 7)
        self.assertIs(self.machine.current(), ConnectionState.CONNECTING)


if __name__ == '__main__':
    unittest.main()
