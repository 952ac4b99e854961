"""
The OS2L listener. Accepts TCP connections from OS2L clients, emits the commands they send as events,
and broadcasts feedback to every connected client.

Threads: the listening socket is served by an accept thread, and each client connection by its own reader
thread. Event handlers run on the thread of the connection that produced the event. Any handler may call
stop(); the lifecycle lock is never held while events are emitted or threads are joined.
"""
import enum
import logging
import socket
import threading
from concurrent.futures import Future

from os2l.bus import CLOSED, CONNECTION, ERROR, WARNING, EventBus
from os2l.config.config import ServerConfig
from os2l.connector.connection import BadFrameEvent, CommandReceivedEvent, ConnectionClosedEvent, ConnectionHandle
from os2l.connector.registry import ClientRegistry
from os2l.discovery import SERVICE_TYPE, ServicePublisher
from os2l.errors import OS2LError
from os2l.protocol.command import encode_feedback
from os2l.support.loop import AsyncLoop

logger = logging.getLogger(__name__)


class AlreadyRunningError(OS2LError):
    """ start() was called on a server that is already running. """


class NotRunningError(OS2LError):
    """ stop() was called on a server that is not running. """


class ServerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class AcceptLoop(AsyncLoop):
    """
    Accepts connections on a listening socket. The socket is given a timeout so the loop notices a stop request
    even when no client connects.

    :param sock: the bound, listening socket
    :param on_accept: called with (socket, address) for each accepted connection
    :param on_error: called with the OSError when accept() fails while the loop is running
    """
    def __init__(self, sock: socket.socket, on_accept, on_error, timeout=0.5):
        super().__init__(name="os2l-accept")
        self.sock = sock
        self.on_accept = on_accept
        self.on_error = on_error
        sock.settimeout(timeout)

    def loop(self):
        try:
            client, address = self.sock.accept()
        except socket.timeout:
            return
        except OSError as e:
            if self.running():
                self.on_error(e)
            return
        client.setblocking(True)
        self.on_accept(client, address)


class OS2LServer:
    """
    Listens for OS2L clients.

    Subscribe to events with on(name, handler). See EventBus for the events emitted.

    :param options: a mapping of options or a ServerConfig. Keyword arguments are merged in.
        See ServerConfig for the options. Invalid options raise ConfigError.
    :param publisher_factory: creates the service publisher used to announce the server when it starts.
    """
    backlog = 5
    join_timeout = 5.0

    def __init__(self, options=None, publisher_factory=ServicePublisher, **kwargs):
        self.config = ServerConfig.from_options(options, **kwargs)
        self.events = EventBus()
        self.registry = ClientRegistry()
        self.publisher_factory = publisher_factory
        self.publisher = None
        self._state = ServerState.STOPPED
        self._lock = threading.RLock()
        self._socket = None
        self._accept_loop = None

    def __enter__(self):
        self.start().result()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.running:
            self.stop()

    def __repr__(self):
        return "OS2LServer(port=%s, state=%s)" % (self.port, self._state.value)

    # subscriptions

    def on(self, name, handler):
        self.events.on(name, handler)
        return self

    add_listener = on

    def once(self, name, handler):
        self.events.once(name, handler)
        return self

    def remove_listener(self, name, handler):
        self.events.remove_listener(name, handler)
        return self

    # queries

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is ServerState.RUNNING

    @property
    def address(self):
        """ the address the listening socket is bound to, or None when not listening. """
        sock = self._socket
        if sock is None:
            return None
        try:
            return sock.getsockname()
        except OSError:
            return None

    @property
    def port(self) -> int:
        """ the port being listened on. This differs from the configured port when that is 0. """
        address = self.address
        return address[1] if address else self.config.port

    @property
    def connections(self) -> int:
        return len(self.registry)

    @property
    def clients(self) -> list:
        return self.registry.snapshot()

    # lifecycle

    def start(self, callback=None) -> Future:
        """
        Starts listening. The returned future completes with this server once the socket is listening, or
        with the exception that prevented it: AlreadyRunningError when already running, or the OSError
        from binding the socket.

        :param callback: called with no arguments once the server is listening.
        """
        future = Future()
        with self._lock:
            already_running = self.running
            if not already_running:
                self._state = ServerState.RUNNING
                sock = self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        if already_running:
            e = AlreadyRunningError("OS2L server is already running")
            logger.warning(str(e))
            self.events.emit(WARNING, e)
            future.set_exception(e)
            return future

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.backlog)
        except OSError as e:
            logger.error("unable to listen on port %d: %s", self.config.port, e)
            self._listener_failed(e)
            future.set_exception(e)
            return future

        with self._lock:
            if self._socket is not sock:
                # stopped while binding
                e = NotRunningError("OS2L server was stopped while starting")
                future.set_exception(e)
                return future
            self._accept_loop = AcceptLoop(sock, self._accepted, self._listener_failed, self.config.accept_timeout)
            self._accept_loop.start()
        logger.info("listening for OS2L clients on %s:%d", self.config.host or '*', self.port)

        if self.config.publish:
            self._publish()

        future.set_result(self)
        if callback is not None:
            callback()
        return future

    def stop(self) -> bool:
        """
        Stops listening, disconnects all clients and withdraws the service announcement.
        Calling stop() on a server that is not running emits a warning and does nothing else.
        :return: True if the server was running.
        """
        with self._lock:
            was_running = self.running
            if was_running:
                self._state = ServerState.STOPPED
                sock, self._socket = self._socket, None
                accept_loop, self._accept_loop = self._accept_loop, None
                publisher, self.publisher = self.publisher, None

        if not was_running:
            e = NotRunningError("OS2L server can't close because it is not running")
            logger.warning(str(e))
            self.events.emit(WARNING, e)
            return False

        if accept_loop is not None:
            accept_loop.stop_event.set()
        if sock is not None:
            sock.close()
        if accept_loop is not None:
            accept_loop.stop(self.join_timeout)

        for handle in self.registry.clear():
            handle.close()
            handle.stop(self.join_timeout)

        if publisher is not None:
            self._withdraw(publisher)

        logger.info("OS2L server stopped")
        self.events.emit(CLOSED)
        return True

    def _listener_failed(self, error):
        """ the listening socket failed. The error is reported and the server is stopped. """
        self.events.emit(ERROR, error)
        if self.running:
            self.stop()

    def _publish(self):
        try:
            publisher = self.publisher_factory()
            publisher.publish(self.config.service_name, SERVICE_TYPE, self.port, self.config.host)
        except Exception as e:
            self._publisher_failed("publish", e)
            return
        with self._lock:
            if self.running and self.publisher is None:
                self.publisher = publisher
                publisher = None
        if publisher is not None:
            # stopped while publishing
            self._withdraw(publisher)

    def _withdraw(self, publisher):
        try:
            publisher.stop()
        except Exception as e:
            self._publisher_failed("withdraw", e)

    def _publisher_failed(self, action, error):
        logger.warning("unable to %s the OS2L service: %s", action, error)
        self.events.emit(WARNING, error)

    # connections

    def _accepted(self, client: socket.socket, address):
        handle = ConnectionHandle(client, address, self.config.max_buffer)
        handle.events.add(self._connection_event)
        with self._lock:
            accepted = self.running
            if accepted:
                self.registry.add(handle)
        if not accepted:
            handle.close()
            return
        handle.start()
        logger.info("client %s connected", address)
        self.events.emit(CONNECTION, handle)

    def _connection_event(self, event):
        if isinstance(event, CommandReceivedEvent):
            self.events.dispatch(event.command)
        elif isinstance(event, BadFrameEvent):
            logger.warning("bad frame from %s: %r", event.handle.address, event.error.frame)
            self.events.emit(WARNING, event.error)
        elif isinstance(event, ConnectionClosedEvent):
            self.registry.remove(event.handle)
            if event.error is not None:
                self.events.emit(WARNING, event.error)

    # broadcast

    def feedback(self, name, state, page=None) -> int:
        """
        Sends a feedback message to every connected client. The message is encoded once and the same bytes are
        written to each client. Clients that cannot be written to are skipped.
        :return: the number of clients the message was written to.
        """
        data = encode_feedback(name, state, page)
        sent = []

        def send(handle):
            if handle.write(data):
                sent.append(handle)

        self.registry.for_each(send)
        return len(sent)
