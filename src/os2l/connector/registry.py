import threading


class ClientRegistry:
    """
    The live client connections, in the order they were added.
    A handle appears at most once. All methods are thread-safe, and iteration is over a snapshot so
    handles can be added or removed while iterating, including by the callback passed to for_each().
    """

    def __init__(self):
        self._handles = []
        self._lock = threading.Lock()

    def add(self, handle) -> bool:
        """ adds a handle. Returns False if it was already registered. """
        with self._lock:
            if handle in self._handles:
                return False
            self._handles.append(handle)
            return True

    def remove(self, handle) -> bool:
        """ removes a handle. Removing a handle that is not registered is a no-op that returns False. """
        with self._lock:
            try:
                self._handles.remove(handle)
                return True
            except ValueError:
                return False

    def snapshot(self) -> list:
        with self._lock:
            return list(self._handles)

    def for_each(self, fn):
        """ calls fn with each handle registered when the call started. """
        for handle in self.snapshot():
            fn(handle)

    def clear(self) -> list:
        """ removes all handles and returns them """
        with self._lock:
            handles = self._handles
            self._handles = []
            return handles

    def __iter__(self):
        return iter(self.snapshot())

    def __len__(self):
        with self._lock:
            return len(self._handles)

    def __contains__(self, handle):
        with self._lock:
            return handle in self._handles
