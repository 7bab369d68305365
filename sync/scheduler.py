# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Background scheduler for periodic reconciliation
"""
import logging
import threading
from threading import Lock
from typing import Optional

import schedule

import config
from errors import ReconcileInProgress, ScheduleError
from utils.timezone import format_local_time, utc_now

logger = logging.getLogger(__name__)


class ReconcileScheduler:
    """Runs `engine.reconcile()` for the engine's current week on a daemon thread"""

    def __init__(self, engine, interval_minutes: Optional[int] = None,
                 startup_delay: float = 60, poll_seconds: float = 30):
        self.engine = engine
        self.interval_minutes = interval_minutes or config.RECONCILE_INTERVAL_MIN
        self.startup_delay = startup_delay
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.scheduler_lock = Lock()
        self.scheduler_thread = None
        self.last_report = None
        self._stop_event = threading.Event()

    def start(self):
        """Start the scheduler"""
        with self.scheduler_lock:
            if self.scheduler_thread is None or not self.scheduler_thread.is_alive():
                logger.info(f"Starting reconcile scheduler at {format_local_time(utc_now())}...")
                self._stop_event.clear()
                self.scheduler.clear()
                self.scheduler.every(self.interval_minutes).minutes.do(self.run_once)
                self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True,
                                                         name=f"reconcile-{self.engine.tenant_id}")
                self.scheduler_thread.start()
            else:
                logger.info("Reconcile scheduler already running")

    def stop(self):
        """Stop the scheduler"""
        self._stop_event.set()
        with self.scheduler_lock:
            self.scheduler.clear()
        logger.info(f"Stopping reconcile scheduler at {format_local_time(utc_now())}...")

    def is_running(self) -> bool:
        with self.scheduler_lock:
            return bool(self.scheduler_thread and self.scheduler_thread.is_alive()
                        and not self._stop_event.is_set())

    def _run_scheduler(self):
        logger.info(f"Reconcile scheduler started - every {self.interval_minutes} minutes")

        # Give the process time to finish starting before the first pass
        if self._stop_event.wait(self.startup_delay):
            return

        while not self._stop_event.is_set():
            self.scheduler.run_pending()
            self._stop_event.wait(self.poll_seconds)

        logger.info(f"Reconcile scheduler stopped at {format_local_time(utc_now())}")

    def run_once(self):
        """One scheduled pass; errors are logged so the loop keeps running"""
        if not self.engine.started:
            logger.warning("⚠️ Scheduled reconcile skipped - engine not started")
            return None

        try:
            report = self.engine.reconcile()
        except ReconcileInProgress:
            logger.info("Scheduled reconcile skipped - a reconcile is already running")
            return None
        except ScheduleError as e:
            logger.error(f"❌ Scheduled reconcile failed: {e.message}")
            return None

        self.last_report = report
        if report.success:
            logger.info(f"✅ Scheduled reconcile completed: imported={report.imported} "
                        f"conflicts={report.conflicts}")
        else:
            logger.warning(f"⚠️ Scheduled reconcile completed with {report.errors} errors")
        return report
