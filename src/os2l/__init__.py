"""
OS2L listener

OS2L lets DJ software drive a lighting console over the network. The DJ software connects to the console
over TCP and sends JSON messages such as {"evt":"btn","name":"Strobe","state":"on"} or
{"evt":"beat","change":false,"pos":12,"bpm":128}. The console can send {"evt":"feedback",...} messages back
to show the state of its buttons.

- OS2LServer: listens for clients, emits the decoded messages as events and broadcasts feedback.
- FrameDecoder: splits a connection's byte stream into messages. Messages are concatenated with no separator,
  so a message ends at the next closing brace.
- ConnectionHandle: one connected client, with its own reader thread and decoder.
- ClientRegistry: the connected clients, used to broadcast feedback.
- EventBus: emits data, <evt>, btnOn/btnOff, connection, closed, warning and error events.
- ServicePublisher: announces the server with zeroconf so clients can find it.

Example:

    server = OS2LServer(port=1503)
    server.on("btnOn", lambda name: print("button on", name))
    server.start().result()
    ...
    server.feedback("Strobe", True)
    server.stop()
"""
from os2l.bus import EventBus
from os2l.config.config import ConfigError, ServerConfig, load_config
from os2l.connector.connection import ConnectionHandle
from os2l.connector.registry import ClientRegistry
from os2l.discovery import DiscoveryError, ServicePublisher
from os2l.errors import OS2LError
from os2l.protocol.command import Command
from os2l.protocol.framing import BadFrameError, FrameDecoder, FrameTooLargeError
from os2l.server import AlreadyRunningError, NotRunningError, OS2LServer, ServerState

__all__ = [
    'AlreadyRunningError', 'BadFrameError', 'ClientRegistry', 'Command', 'ConfigError', 'ConnectionHandle',
    'DiscoveryError', 'EventBus', 'FrameDecoder', 'FrameTooLargeError', 'NotRunningError', 'OS2LError',
    'OS2LServer', 'ServerConfig', 'ServerState', 'ServicePublisher', 'load_config',
]
