import socket
import threading
import time
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, contains_exactly, equal_to, instance_of, is_, none

from os2l.connector.connection import BadFrameEvent, CommandReceivedEvent, ConnectionClosedEvent, ConnectionHandle
from os2l.protocol.framing import FrameTooLargeError
from os2l.support.loop_test import debug_timeout


def wait_for(predicate, interval=0.01):
    while not predicate():
        time.sleep(interval)


class ConnectionHandleTest(unittest.TestCase):

    def setUp(self):
        self.sock = Mock()
        self.sut = ConnectionHandle(self.sock, ('127.0.0.1', 5000))
        self.received = []
        self.sut.events.add(self.received.append)

    def test_command_event(self):
        self.sut.on_data(b'{"evt":"beat"}')
        assert_that(self.received, contains_exactly(instance_of(CommandReceivedEvent)))
        event = self.received[0]
        assert_that(event.handle, is_(self.sut))
        assert_that(event.command, equal_to({"evt": "beat"}))

    def test_events_in_stream_order(self):
        self.sut.on_data(b'{"evt":"a"}{bad}{"evt":"b"}')
        assert_that(self.received, contains_exactly(
            instance_of(CommandReceivedEvent), instance_of(BadFrameEvent), instance_of(CommandReceivedEvent)))
        assert_that(self.received[1].error.frame, is_('{bad}'))
        assert_that(self.sut.closed, is_(False))

    def test_deeply_nested_frame_keeps_connection_open(self):
        self.sut.on_data(b'[' * 100000 + b'}{"evt":"cmd"}')
        assert_that(self.received, contains_exactly(instance_of(BadFrameEvent), instance_of(CommandReceivedEvent)))
        assert_that(self.received[1].command, equal_to({"evt": "cmd"}))
        assert_that(self.sut.closed, is_(False))
        self.sock.close.assert_not_called()

    def test_data_after_close_is_ignored(self):
        self.sut.close()
        self.received.clear()
        self.sut.on_data(b'{"evt":"a"}')
        assert_that(self.received, is_([]))

    def test_close_destroys_socket_once(self):
        assert_that(self.sut.close(), is_(True))
        assert_that(self.sut.close(), is_(False))
        self.sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)
        self.sock.close.assert_called_once()
        assert_that(self.received, contains_exactly(instance_of(ConnectionClosedEvent)))
        assert_that(self.received[0].error, is_(none()))
        assert_that(self.sut.running(), is_(False))

    def test_close_swallows_shutdown_error(self):
        self.sock.shutdown.side_effect = OSError("not connected")
        self.sut.close()
        self.sock.close.assert_called_once()

    def test_error_and_end_close_once(self):
        error = OSError("reset")
        self.sut.on_error(error)
        self.sut.on_end()
        closed = [e for e in self.received if isinstance(e, ConnectionClosedEvent)]
        assert_that(len(closed), is_(1))
        assert_that(closed[0].error, is_(error))

    def test_loop_reads_and_decodes(self):
        self.sock.recv.return_value = b'{"evt":"beat"}'
        self.sut.loop()
        self.sock.recv.assert_called_once_with(ConnectionHandle.read_size)
        assert_that(self.received, contains_exactly(instance_of(CommandReceivedEvent)))

    def test_loop_end_of_stream(self):
        self.sock.recv.return_value = b''
        self.sut.loop()
        assert_that(self.sut.closed, is_(True))
        assert_that(self.received[-1].error, is_(none()))

    def test_loop_socket_error(self):
        error = ConnectionResetError()
        self.sock.recv.side_effect = error
        self.sut.loop()
        assert_that(self.sut.closed, is_(True))
        assert_that(self.received[-1].error, is_(error))

    def test_loop_error_after_close_is_not_reported(self):
        self.sut.close()
        self.received.clear()
        self.sock.recv.side_effect = OSError("bad file descriptor")
        self.sut.loop()
        assert_that(self.received, is_([]))

    def test_frame_too_large_closes(self):
        sut = ConnectionHandle(self.sock, None, max_buffer=4)
        received = []
        sut.events.add(received.append)
        sut.on_data(b'{"evt":"beat"')
        assert_that(sut.closed, is_(True))
        assert_that(received[-1].error, is_(instance_of(FrameTooLargeError)))

    def test_close_from_command_handler_stops_processing(self):
        def close_on_command(event):
            if isinstance(event, CommandReceivedEvent):
                self.sut.close()

        self.sut.events.add(close_on_command)
        self.sut.on_data(b'{"evt":"a"}{"evt":"b"}')
        commands = [e for e in self.received if isinstance(e, CommandReceivedEvent)]
        assert_that(len(commands), is_(1))

    def test_unexpected_exception_closes(self):
        error = RuntimeError("boom")
        self.sut.exception_handler(error)
        assert_that(self.sut.closed, is_(True))
        assert_that(self.received[-1].error, is_(error))

    def test_write(self):
        assert_that(self.sut.write(b'abc'), is_(True))
        self.sock.sendall.assert_called_once_with(b'abc')

    def test_write_failure_is_swallowed(self):
        self.sock.sendall.side_effect = BrokenPipeError()
        assert_that(self.sut.write(b'abc'), is_(False))

    def test_no_write_after_close(self):
        self.sut.close()
        assert_that(self.sut.write(b'abc'), is_(False))
        self.sock.sendall.assert_not_called()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_waits_for_write_in_progress(self):
        closer = threading.Thread(target=self.sut.close)
        with self.sut._write_lock:
            closer.start()
            wait_for(lambda: self.sock.shutdown.called)
            time.sleep(0.05)
            self.sock.close.assert_not_called()
        closer.join()
        self.sock.close.assert_called_once()
        assert_that(self.sut.write(b'abc'), is_(False))
        self.sock.sendall.assert_not_called()


class ConnectionHandleSocketTest(unittest.TestCase):
    """ runs the handle's reader thread against a real socket pair """

    def setUp(self):
        self.client, server = socket.socketpair()
        self.sut = ConnectionHandle(server, "pair")
        self.received = []
        self.sut.events.add(self.received.append)

    def tearDown(self):
        self.sut.close()
        self.sut.stop()
        self.client.close()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_reads_frames_in_order(self):
        self.sut.start()
        self.client.sendall(b'{"evt":"btn","name":"A","state":"on"}{"evt":')
        self.client.sendall(b'"btn","name":"B","state":"off"}')
        wait_for(lambda: len(self.received) == 2)
        names = [e.command.name for e in self.received]
        assert_that(names, contains_exactly("A", "B"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_peer_close_fires_closed(self):
        self.sut.start()
        self.client.close()
        wait_for(lambda: self.sut.closed)
        wait_for(lambda: self.received)
        assert_that(self.received[-1], is_(instance_of(ConnectionClosedEvent)))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_interrupts_blocked_read(self):
        self.sut.start()
        thread = self.sut.background_thread
        self.sut.close()
        thread.join()
        assert_that(thread.is_alive(), is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_write_reaches_peer(self):
        self.sut.write(b'{"evt":"feedback"}')
        assert_that(self.client.recv(100), is_(b'{"evt":"feedback"}'))


if __name__ == '__main__':  # pragma: no cover
    unittest.main()
