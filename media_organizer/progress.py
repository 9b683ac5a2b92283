import threading
from dataclasses import dataclass
from typing import Optional

from tqdm import tqdm

from . import config


class ProgressCounters:
    """Counters shared by the pipeline stages; every update is atomic."""

    def __init__(self):
        self._lock = threading.Lock()
        self._values = {
            'discovered': 0,
            'processed': 0,
            'transferred': 0,
            'skipped': 0,
            'errors': 0,
        }

    def increment(self, name: str, n: int = 1):
        with self._lock:
            self._values[name] += n

    def get(self, name: str) -> int:
        with self._lock:
            return self._values[name]

    def snapshot(self) -> "ProgressSnapshot":
        with self._lock:
            return ProgressSnapshot(**self._values)


@dataclass(frozen=True)
class ProgressSnapshot:
    discovered: int
    processed: int
    transferred: int
    skipped: int
    errors: int


class ProgressMonitor(threading.Thread):
    """
    Background thread that redraws a tqdm bar from the counters every
    `interval` seconds until stopped.
    """

    def __init__(self, counters: ProgressCounters, interval: float = config.PROGRESS_INTERVAL, enabled: bool = True):
        super().__init__(name="progress", daemon=True)
        self.counters = counters
        self.interval = interval
        self.enabled = enabled
        self._stop_event = threading.Event()
        self._bar: Optional[tqdm] = None

    def run(self):
        self._bar = tqdm(total=0, unit="file", desc="Organizing", disable=not self.enabled)
        try:
            while not self._stop_event.wait(self.interval):
                self._refresh()
            self._refresh()
        finally:
            self._bar.close()

    def _refresh(self):
        snap = self.counters.snapshot()
        self._bar.total = snap.discovered
        self._bar.n = snap.transferred
        self._bar.set_postfix(scanned=snap.processed, skipped=snap.skipped, errors=snap.errors, refresh=False)
        self._bar.refresh()

    def stop(self):
        self._stop_event.set()
        if self.is_alive():
            self.join()
