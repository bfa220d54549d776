import logging
import threading

logger = logging.getLogger(__name__)


class Scheduler:
    """Triggers a collection on start, then every `interval_hours` hours."""

    def __init__(self, collector, interval_hours):
        self.collector = collector
        self.interval = interval_hours * 3600
        self._stop = threading.Event()
        self._thread = None

    def run(self):
        logger.info("refresh interval is %d hours", self.interval // 3600)
        while not self._stop.is_set():
            self.collector.trigger()
            self._stop.wait(self.interval)

    def start(self):
        self._thread = threading.Thread(target=self.run, name="scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
