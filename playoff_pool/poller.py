import logging
import threading
from typing import Callable, Optional

from .errors import PoolError
from .ingest import StatSync, SyncReport

log = logging.getLogger(__name__)


class LiveStatsPoller:
    """Re-sync a week's stats on a fixed interval in a background thread.

    A tick that arrives while the previous sync is still running is skipped.
    Failures are logged and the next tick simply tries again.
    """

    def __init__(self, sync: StatSync, week: int, interval: float = 60.0,
                 on_report: Optional[Callable[[SyncReport], None]] = None,
                 before_sync: Optional[Callable[[], None]] = None):
        self.sync = sync
        self.week = week
        self.interval = interval
        self.on_report = on_report
        self.before_sync = before_sync
        self.last_report: Optional[SyncReport] = None
        self.skipped = 0
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> bool:
        """Run one sync pass unless one is already running. Returns False when skipped or failed."""
        if not self._in_flight.acquire(blocking=False):
            self.skipped += 1
            log.info('Previous stats sync still running; skipping tick')
            return False
        try:
            if self.before_sync:
                self.before_sync()
            report = self.sync.sync_week(self.week)
        except PoolError as e:
            log.error('Live stats sync for week %d failed: %s', self.week, e)
            return False
        except Exception:
            # the loop must outlive any single bad pass
            log.exception('Unexpected error in live stats sync for week %d', self.week)
            return False
        finally:
            self._in_flight.release()
        self.last_report = report
        if self.on_report:
            self.on_report(report)
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f'stats-poller-week{self.week}', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
