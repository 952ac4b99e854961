import logging
import socket
import threading

from os2l.protocol.framing import BadFrameError, FrameDecoder, FrameTooLargeError
from os2l.support.events import EventSource
from os2l.support.loop import AsyncLoop

logger = logging.getLogger(__name__)


class ConnectionEvent:
    """ base class for events fired by a connection handle. """
    def __init__(self, handle):
        self.handle = handle


class CommandReceivedEvent(ConnectionEvent):
    """ A complete frame was received and decoded. """
    def __init__(self, handle, command):
        super().__init__(handle)
        self.command = command


class BadFrameEvent(ConnectionEvent):
    """ A frame was received that could not be decoded. The connection stays open. """
    def __init__(self, handle, error: BadFrameError):
        super().__init__(handle)
        self.error = error


class ConnectionClosedEvent(ConnectionEvent):
    """ The connection was closed. error is None when the peer ended the connection or it was closed locally. """
    def __init__(self, handle, error=None):
        super().__init__(handle)
        self.error = error


class ConnectionHandle(AsyncLoop):
    """
    One accepted client socket. A background thread reads from the socket and feeds the bytes to
    a FrameDecoder owned by this handle, so the frames of one connection are processed in the order they arrived
    and never concurrently.

    Fires ConnectionEvent instances on `events`:
    CommandReceivedEvent for each good frame, BadFrameEvent for each bad frame and
    a single ConnectionClosedEvent when the connection ends, fails or is closed.

    :param sock: the connected socket
    :param address: the peer address, used for logging
    :param max_buffer: passed to the FrameDecoder
    """
    read_size = 4096

    def __init__(self, sock: socket.socket, address=None, max_buffer=0):
        super().__init__(name="os2l-client-%s" % (address,))
        self.sock = sock
        self.address = address
        self.decoder = FrameDecoder(max_buffer)
        self.events = EventSource()
        self._closed = False
        self._close_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def __repr__(self):
        return "ConnectionHandle(%s)" % (self.address,)

    @property
    def closed(self) -> bool:
        return self._closed

    def loop(self):
        try:
            data = self.sock.recv(self.read_size)
        except OSError as e:
            if not self._closed:
                self.on_error(e)
            return
        if self._closed:
            return
        if data:
            self.on_data(data)
        else:
            self.on_end()

    def exception_handler(self, e):
        self.logger.exception("unexpected error on connection %s: %s", self.address, e)
        self.close(e)

    def on_data(self, data: bytes):
        if self._closed:
            return
        try:
            for result in self.decoder.decode(data):
                if isinstance(result, BadFrameError):
                    self.events.fire(BadFrameEvent(self, result))
                else:
                    self.events.fire(CommandReceivedEvent(self, result))
                if self._closed:
                    break
        except FrameTooLargeError as e:
            self.on_error(e)

    def on_end(self):
        logger.info("client %s disconnected", self.address)
        self.close()

    def on_error(self, error):
        logger.info("client %s failed: %s", self.address, error)
        self.close(error)

    def close(self, error=None) -> bool:
        """
        Destroys the socket immediately and stops the reader. Only the first call has any effect.
        :return: True if this call closed the connection.
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True
        self.stop_event.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # the peer may have closed the socket already
            pass
        # a write in progress finishes before the descriptor is released
        with self._write_lock:
            self.sock.close()
        self.decoder.reset()
        self.events.fire(ConnectionClosedEvent(self, error))
        return True

    def write(self, data: bytes) -> bool:
        """
        Sends data to the client. Failures are logged and not raised, so a dead client does not
        interrupt a broadcast.
        :return: True if the data was sent.
        """
        if self._closed:
            return False
        with self._write_lock:
            if self._closed:
                return False
            try:
                self.sock.sendall(data)
                return True
            except OSError as e:
                logger.debug("unable to write to client %s: %s", self.address, e)
                return False
