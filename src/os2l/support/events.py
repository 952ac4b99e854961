import threading
from collections import OrderedDict


class EventSource(object):
    """
    An ordered list of handlers that are called when the event is fired.
    Handlers may be added or removed from any thread, including from within a handler.
    Firing iterates a snapshot of the handlers, so changes take effect from the next fire().

    :param error_handler: optional callable(handler, exception). When given, an exception raised by a handler
        is passed to it and the remaining handlers still run. Otherwise the exception propagates to the caller.
    """

    def __init__(self, error_handler=None):
        self._handlers = []
        self._lock = threading.Lock()
        self.error_handler = error_handler

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def __len__(self):
        return len(self._handlers)

    def add(self, handler):
        with self._lock:
            self._handlers.append(handler)
        return self

    def remove(self, handler):
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)
        return self

    def handlers(self):
        with self._lock:
            return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._fire(*args, **kwargs)

    def fire_all(self, events):
        for e in events:
            self._fire(e)

    def _fire(self, *args, **kwargs):
        for handler in self.handlers():
            if self.error_handler is None:
                handler(*args, **kwargs)
                continue
            try:
                handler(*args, **kwargs)
            except Exception as e:
                self.error_handler(handler, e)


class NamedEventSource(object):
    """
    Maps event names to an EventSource of handlers. The name is a plain string that is looked up when
    the event is emitted, so names can come from runtime data. Emitting a name that has no handlers does nothing.
    """

    def __init__(self, error_handler=None):
        self._sources = OrderedDict()
        self._lock = threading.Lock()
        self.error_handler = error_handler

    def _source(self, name, create=False):
        with self._lock:
            source = self._sources.get(name)
            if source is None and create:
                source = self._sources[name] = EventSource(self.error_handler)
            return source

    def on(self, name, handler):
        """ registers a handler for the named event. Handlers run in registration order. """
        self._source(name, True).add(handler)
        return self

    add_listener = on

    def once(self, name, handler):
        """ registers a handler that is removed after the first time the named event is emitted. """
        def wrapper(*args, **kwargs):
            self.remove_listener(name, wrapper)
            return handler(*args, **kwargs)
        wrapper.listener = handler
        return self.on(name, wrapper)

    def remove_listener(self, name, handler):
        source = self._source(name)
        if source is not None:
            for h in source.handlers():
                if h == handler or getattr(h, 'listener', None) == handler:
                    source.remove(h)
                    break
        return self

    off = remove_listener

    def remove_all_listeners(self, name=None):
        with self._lock:
            if name is None:
                self._sources.clear()
            else:
                self._sources.pop(name, None)
        return self

    def listeners(self, name):
        source = self._source(name)
        return source.handlers() if source is not None else ()

    def listener_count(self, name):
        return len(self.listeners(name))

    def event_names(self):
        with self._lock:
            return [name for name, source in self._sources.items() if len(source)]

    def emit(self, name, *args, **kwargs):
        """
        fires the handlers registered for the named event.
        :return: True if there was at least one handler for the event.
        """
        source = self._source(name)
        if source is None or not len(source):
            return False
        source.fire(*args, **kwargs)
        return True
