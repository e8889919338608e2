import logging
import threading
from typing import Optional

from orders import OrderEngine, SweepReport

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Runs `OrderEngine.expire_due_orders` on a fixed interval in a background thread.

    A failing run is logged and the schedule carries on.
    """

    def __init__(self, engine: OrderEngine, interval_seconds: float = 60):
        self.engine = engine
        self.interval = interval_seconds
        self.runs = 0
        self.last_report: Optional[SweepReport] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info("Expiry sweeper started (every %ss)", self.interval)

    def stop(self, timeout: float = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Expiry sweeper stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def run_once(self) -> Optional[SweepReport]:
        self.runs += 1
        try:
            report = self.engine.expire_due_orders()
        except Exception:
            logger.exception("Expiry sweep failed")
            return None
        self.last_report = report
        if report.release_failures or report.errors:
            logger.warning(
                "Expiry sweep finished with %d release failure(s) and %d error(s)",
                report.release_failures, report.errors,
            )
        logger.info("Auto-expiry check completed: %d order(s) expired", report.expired)
        return report
