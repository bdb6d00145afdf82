"""Per-key locking for shared in-process state."""

import threading
from contextlib import contextmanager


class KeyedLock:
    """Hands out one lock per key so unrelated keys never contend.

    Entries are reference counted and dropped once no thread holds or waits
    on them, so the table only grows with the number of keys in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)
