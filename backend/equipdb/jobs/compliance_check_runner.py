"""Periodic compliance check.

Recomputes bucket counts and notifications for every asset class on its own
session. Best effort: a failed tick is logged and retried on the next one,
and nothing escapes into the host process. Safe to run from cron as well
(`python -m equipdb.jobs.compliance_check_runner`).
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import date
from typing import Callable, Optional

from sqlalchemy.orm import Session

from equipdb.apps.compliance import scheduler
from equipdb.apps.compliance import services as compliance_services
from equipdb.apps.compliance.schemas import ComplianceSummaryRead

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = int(os.getenv("COMPLIANCE_CHECK_INTERVAL_SEC", "3600"))
INITIAL_DELAY_SEC = int(os.getenv("COMPLIANCE_CHECK_INITIAL_DELAY_SEC", "5"))


def run_check(
    session_factory: Callable[[], Session],
    *,
    today: Optional[date] = None,
) -> ComplianceSummaryRead:
    """One check on a fresh session. Raises on storage failure."""
    db = session_factory()
    try:
        return compliance_services.check_compliance(db, today or scheduler.current_date())
    finally:
        db.rollback()
        db.close()


class ComplianceCheckRunner:
    """Background thread that keeps the latest compliance summary around."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        interval_sec: float = DEFAULT_INTERVAL_SEC,
        initial_delay_sec: float = INITIAL_DELAY_SEC,
        clock: Callable[[], date] = scheduler.current_date,
    ) -> None:
        self.session_factory = session_factory
        self.interval_sec = interval_sec
        self.initial_delay_sec = initial_delay_sec
        self.clock = clock
        self._latest: Optional[ComplianceSummaryRead] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def latest(self) -> Optional[ComplianceSummaryRead]:
        with self._lock:
            return self._latest

    def run_once(self) -> Optional[ComplianceSummaryRead]:
        try:
            summary = run_check(self.session_factory, today=self.clock())
        except Exception:
            logger.exception("Compliance check failed; retrying on the next tick")
            return None
        with self._lock:
            self._latest = summary
        logger.info(
            "Compliance check completed",
            extra={
                "as_of": summary.as_of.isoformat(),
                "notifications": len(summary.notifications),
                "critical": sum(1 for item in summary.notifications if item.type == "critical"),
            },
        )
        return summary

    def _loop(self) -> None:
        if self._stop.wait(self.initial_delay_sec):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_sec):
                return

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="compliance-check-runner", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def run() -> dict:
    from equipdb.database import ReadSessionLocal

    summary = run_check(ReadSessionLocal)
    return summary.model_dump(mode="json", by_alias=True)


if __name__ == "__main__":
    result = run()
    print("Compliance check completed:", result["counts"], len(result["notifications"]), "notifications")
