"""
Translates decoded OS2L commands into the named events that local code subscribes to.
"""
import logging

from os2l.protocol.command import Command
from os2l.support.events import NamedEventSource

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"
DATA = "data"
BTN = "btn"
BTN_ON = "btnOn"
BTN_OFF = "btnOff"
CONNECTION = "connection"
CLOSED = "closed"

BUTTON_ON_STATE = "on"


class EventBus(NamedEventSource):
    """
    The single place where events are emitted to subscribers.

    Subscribers register a callable for an event name with on(). A subscriber that raises is logged and the
    remaining subscribers still run, so one faulty subscriber cannot affect the connection that produced
    the event or the other subscribers.

    Events:
      - error(exception): the listening socket failed
      - warning(exception): a non-fatal condition, such as a bad frame or stopping a server that is not running
      - data(command): every decoded command
      - <evt>(command): the command, under the name given by its evt field (btn, cmd, beat...)
      - btnOn(name), btnOff(name): button commands, split by state
      - connection(handle): a client connected
      - closed(): the server stopped
    """

    def __init__(self):
        super().__init__(self._handler_failed)

    @staticmethod
    def _handler_failed(handler, e):
        logger.exception("event handler %r failed: %s", handler, e)

    def emit(self, name, *args, **kwargs):
        handled = super().emit(name, *args, **kwargs)
        if name == ERROR and not handled:
            logger.error("unhandled error: %s", args[0] if args else None)
        return handled

    def dispatch(self, command: Command):
        """
        Emits the events for one command, in order: data, the event named by evt, then btnOn/btnOff for buttons.
        A command without a usable evt only produces the data event.
        """
        self.emit(DATA, command)
        evt = command.get("evt")
        if isinstance(evt, str):
            self.emit(evt, command)
        if evt == BTN:
            if command.get("state") == BUTTON_ON_STATE:
                self.emit(BTN_ON, command.get("name"))
            else:
                self.emit(BTN_OFF, command.get("name"))
