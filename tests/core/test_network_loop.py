import asyncio
import threading
import unittest

from easyws.config import ConnectionConfig
from easyws.core.command_channel import CommandChannel, DisconnectCommand, SendCommand
from easyws.core.dispatcher import CallbackSet, EventDispatcher, EventKind
from easyws.core.exceptions import ConnectRefusedError, TransportError
from easyws.core.network_loop import NetworkLoop
from easyws.core.state_machine import ConnectionStateMachine, StateEvent
from easyws.core.status import ConnectionState

from tests.doubles import FakeTransport


class TestNetworkLoop(unittest.IsolatedAsyncioTestCase):
    """Unit tests for NetworkLoop driven against an in-memory transport."""

    async def asyncSetUp(self):
        self.config = ConnectionConfig("ws://x", timeout_ms=200, interval_ms=0)
        self.state_machine = ConnectionStateMachine()
        self.channel = CommandChannel(asyncio.get_running_loop())
        self.callbacks = CallbackSet()
        self.events = []
        self.connected = asyncio.Event()
        self.callbacks.set(EventKind.CONNECTED, self._on_connect)
        self.callbacks.set(EventKind.DISCONNECTED, lambda: self.events.append("disconnect"))
        self.callbacks.set(EventKind.MESSAGE, lambda text: self.events.append(("message", text)))
        self.callbacks.set(EventKind.ERROR, lambda text: self.events.append(("error", text)))

    def _on_connect(self):
        self.events.append(("connect", self.state_machine.current()))
        self.connected.set()

    def _make_loop(self, transport: FakeTransport) -> NetworkLoop:
        # The handle claims the state before it starts a loop.
        self.state_machine.transition(StateEvent.BEGIN_CONNECT)
        return NetworkLoop(self.config, transport, self.state_machine, self.channel, EventDispatcher(self.callbacks))

    async def _start(self, transport: FakeTransport):
        network_loop = self._make_loop(transport)
        task = asyncio.create_task(network_loop.run())
        await asyncio.wait_for(self.connected.wait(), timeout=1)
        return network_loop, task

    async def test_failed_open_reports_error_then_disconnect(self):
        transport = FakeTransport(open_error=ConnectRefusedError("ws://x"))
        network_loop = self._make_loop(transport)
        await asyncio.wait_for(network_loop.run(), timeout=1)

        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)
        self.assertEqual(len(self.events), 2)
        kind, text = self.events[0]
        self.assertEqual(kind, "error")
        self.assertIn("refused", text)
        self.assertEqual(self.events[1], "disconnect")
        self.assertIn("refused", self.state_machine.last_failure)
        self.assertTrue(network_loop.finished.is_set())
        self.assertTrue(self.channel.closed)

    async def test_open_timeout_is_reported(self):
        transport = FakeTransport(hang=True)
        await asyncio.wait_for(self._make_loop(transport).run(), timeout=2)

        errors = [event for event in self.events if isinstance(event, tuple) and event[0] == "error"]
        self.assertEqual(len(errors), 1)
        self.assertIn("timed out", errors[0][1])
        self.assertNotIn("connect", [event[0] for event in self.events if isinstance(event, tuple)])
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)

    async def test_unexpected_open_exception_is_reported_as_error(self):
        transport = FakeTransport(open_error=KeyError("surprise"))
        with self.assertLogs("easyws.core.network_loop", level="ERROR"):
            await asyncio.wait_for(self._make_loop(transport).run(), timeout=1)
        self.assertEqual(self.events[0][0], "error")
        self.assertEqual(self.events[-1], "disconnect")

    async def test_open_passes_config_to_transport(self):
        self.config = ConnectionConfig("ws://x", timeout_ms=1500, interval_ms=250)
        transport = FakeTransport()
        network_loop, task = await self._start(transport)
        self.assertEqual(transport.open_calls, [("ws://x", 1.5, 0.25)])
        self.channel.submit(DisconnectCommand())
        await asyncio.wait_for(task, timeout=1)

    async def test_reaches_connected_before_on_connect(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        self.assertEqual(self.events, [("connect", ConnectionState.CONNECTED)])
        self.assertIs(self.state_machine.current(), ConnectionState.CONNECTED)

        self.channel.submit(DisconnectCommand())
        await asyncio.wait_for(task, timeout=1)

    async def test_send_then_disconnect_reaches_transport_in_order(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        self.channel.submit(SendCommand("ping"))
        self.channel.submit(SendCommand("pong"))
        self.channel.submit(DisconnectCommand())
        self.channel.close()
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(transport.log, [("send", "ping"), ("send", "pong"), ("close",)])
        self.assertEqual(self.events[-1], "disconnect")
        self.assertEqual(self.events.count("disconnect"), 1)
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)
        self.assertIsNone(self.state_machine.last_failure)

    async def test_incoming_messages_and_errors_are_dispatched(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        transport.connection.server_send("hello")
        transport.connection.server_error("hiccup")
        transport.connection.server_send("still here")
        transport.connection.server_close()
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(self.events[1:], [
            ("message", "hello"),
            ("error", "hiccup"),
            ("message", "still here"),
            "disconnect",
        ])

    async def test_peer_close_ends_cycle_once(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        transport.connection.server_close()
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(self.events.count("disconnect"), 1)
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)
        self.assertTrue(self.channel.closed)
        # The connection was closed by the peer, so the loop does not close it again.
        self.assertNotIn(("close",), transport.log)

    async def test_peer_close_racing_disconnect_reports_disconnect_once(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        transport.connection.server_close()
        self.channel.submit(DisconnectCommand())
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(self.events.count("disconnect"), 1)
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)

    async def test_recoverable_send_error_keeps_loop_running(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        transport.connection.send_error = TransportError("buffer full", url="ws://x")
        self.channel.submit(SendCommand("dropped"))
        await asyncio.sleep(0.05)
        self.assertFalse(task.done())
        self.assertEqual(self.events[-1][0], "error")
        self.assertIn("buffer full", self.events[-1][1])

        transport.connection.send_error = None
        self.channel.submit(SendCommand("delivered"))
        self.channel.submit(DisconnectCommand())
        await asyncio.wait_for(task, timeout=1)
        self.assertEqual(transport.log, [("send", "delivered"), ("close",)])

    async def test_send_on_dead_connection_ends_cycle_as_failure(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        # Mark the connection dead without telling the loop through an event.
        transport.connection.closed.set()
        self.channel.submit(SendCommand("lost"))
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(self.events[-2][0], "error")
        self.assertEqual(self.events[-1], "disconnect")
        self.assertIsNotNone(self.state_machine.last_failure)
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)

    async def test_closing_channel_without_disconnect_closes_connection(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        self.channel.close()
        await asyncio.wait_for(task, timeout=1)
        self.assertEqual(transport.log, [("close",)])
        self.assertEqual(self.events[-1], "disconnect")

    async def test_cancellation_still_tears_down(self):
        transport = FakeTransport()
        network_loop, task = await self._start(transport)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(transport.log, [("close",)])
        self.assertEqual(self.events.count("disconnect"), 1)
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)
        self.assertTrue(network_loop.finished.is_set())

    async def test_next_cycle_waits_for_previous_teardown(self):
        first_transport = FakeTransport()
        first_loop, first_task = await self._start(first_transport)
        first_transport.connection.server_close()
        await asyncio.wait_for(first_task, timeout=1)

        self.channel = CommandChannel(asyncio.get_running_loop())
        self.connected.clear()
        second_transport = FakeTransport()
        second_loop = self._make_loop(second_transport)
        second_task = asyncio.create_task(second_loop.run(previous=first_loop))
        await asyncio.wait_for(self.connected.wait(), timeout=1)

        self.channel.submit(DisconnectCommand())
        await asyncio.wait_for(second_task, timeout=1)
        self.assertEqual(self.events.count("disconnect"), 2)


    async def test_disconnect_while_connecting_closes_after_open(self):
        release = threading.Event()
        transport = FakeTransport(hold_open=release)
        task = asyncio.create_task(self._make_loop(transport).run())
        await asyncio.sleep(0.02)

        self.channel.submit(DisconnectCommand())
        self.channel.close()
        release.set()
        await asyncio.wait_for(task, timeout=1)

        self.assertEqual(transport.log, [("close",)])
        self.assertEqual(self.events, ["disconnect"])
        self.assertIs(self.state_machine.current(), ConnectionState.DISCONNECTED)

    async def test_failed_cycle_leaves_a_newer_claim_alone(self):
        def claim_again(text):
            self.events.append(("error", text))
            self.state_machine.transition(StateEvent.BEGIN_CONNECT)

        self.callbacks.set(EventKind.ERROR, claim_again)
        transport = FakeTransport(open_error=ConnectRefusedError("ws://x"))
        await asyncio.wait_for(self._make_loop(transport).run(), timeout=1)

        self.assertEqual(self.events[-1], "disconnect")
        self.assertIs(self.state_machine.current(), ConnectionState.CONNECTING)

if __name__ == '__main__':
    unittest.main()
