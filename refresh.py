import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.base import BaseScheduler

from recurrence import local_now
from schemas import DashboardSelection
from services import DashboardData

logger = logging.getLogger(__name__)


class DashboardRefresher:
    """Runs dashboard loads off the request path and keeps the newest result.

    Every request bumps a generation counter. A load that finishes after a
    newer request was issued is discarded, so a slow stale computation can
    never overwrite fresher data.
    """

    def __init__(
        self,
        compute: Callable[[DashboardSelection, datetime], DashboardData],
        *,
        scheduler: Optional[BaseScheduler] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._compute = compute
        self._scheduler = scheduler
        self._clock = clock
        self._lock = threading.Lock()
        self._generation = 0
        self._latest: Optional[DashboardData] = None

    @property
    def latest_generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def latest(self) -> Optional[DashboardData]:
        with self._lock:
            return self._latest

    def request(self, selection: DashboardSelection) -> int:
        with self._lock:
            self._generation += 1
            generation = self._generation

        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.add_job(
                self._run,
                args=[generation, selection],
                id=f"dashboard_refresh_{generation}",
                misfire_grace_time=60,
            )
        else:
            self._run(generation, selection)
        return generation

    def _run(self, generation: int, selection: DashboardSelection) -> None:
        try:
            data = self._compute(selection, self._clock())
        except Exception:
            logger.exception(f"dashboard_refresh_failed: generation={generation}")
            data = DashboardData.empty()
        self.deliver(generation, data)

    def deliver(self, generation: int, data: DashboardData) -> bool:
        with self._lock:
            if generation != self._generation:
                logger.info(
                    f"dashboard_refresh_stale: generation={generation} latest={self._generation}"
                )
                return False
            data.generation = generation
            self._latest = data
        return True
