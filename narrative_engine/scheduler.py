"""Periodic sweep that flips stale decisions and predictions to expired."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .service import EngineService

logger = logging.getLogger(__name__)


class ExpirySweepScheduler:
    """Runs ``EngineService.sweep_expired`` on an interval.

    Lazy expiry on access stays authoritative; the sweep only flips entities
    nobody has looked at recently.
    """

    def __init__(self, service: EngineService, *, interval_minutes: int = 15) -> None:
        self.service = service
        self.interval_minutes = interval_minutes
        self.scheduler = BackgroundScheduler()
        self.last_result: Optional[Dict[str, int]] = None

    def run_once(self) -> Dict[str, int]:
        self.last_result = self.service.sweep_expired()
        return self.last_result

    def _run_job(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Expiry sweep failed")

    def start(self) -> None:
        self.scheduler.add_job(
            self._run_job,
            "interval",
            minutes=self.interval_minutes,
            id="expiry_sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Expiry sweep scheduled every %s minutes", self.interval_minutes)

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)


__all__ = ["ExpirySweepScheduler"]
