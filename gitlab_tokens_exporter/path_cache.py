import logging
import threading
from concurrent.futures import Future

logger = logging.getLogger(__name__)


class PathCache:
    """Entity id -> descriptive path, memoized for the duration of one cycle.

    Resolution is single-flight: the first caller for a key runs the lookup,
    every other caller (concurrent or later) waits for and gets the same
    result, including the same exception if the lookup failed. Entries are
    never overwritten. Build a new instance for every collection cycle.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    def resolve(self, key, lookup):
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future
        if owner:
            try:
                future.set_result(lookup())
            except Exception as e:
                logger.debug("path lookup for %s failed: %s", key, e)
                future.set_exception(e)
        return future.result()

    def seed(self, key, path):
        """Records an already known path. Returns the path actually cached."""
        return self.resolve(key, lambda: path)
