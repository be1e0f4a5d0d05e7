# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Background Scheduler - Periodic forced webinar sync for configured users
"""
import logging
import threading
import time
from threading import Lock
from typing import Callable, List, Optional

import schedule

import config
from auth.zoom_auth import ZoomCredentials
from utils.timezone import get_utc_time, to_iso

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Manages background sync scheduling"""

    def __init__(self, sync_engine, user_ids: Optional[List[str]] = None,
                 interval_minutes: Optional[int] = None,
                 credentials_provider: Optional[Callable[[], ZoomCredentials]] = None):
        self.sync_engine = sync_engine
        self.user_ids = list(user_ids if user_ids is not None else config.SCHEDULED_SYNC_USER_IDS)
        self.interval_minutes = interval_minutes or config.SYNC_INTERVAL_MIN
        self.credentials_provider = credentials_provider or ZoomCredentials.from_env

        self.scheduler_lock = Lock()
        self.scheduler_running = False
        self.scheduler_thread = None
        self.scheduler = schedule.Scheduler()

        self.last_scheduled_sync = None
        self.scheduled_sync_count = 0

    def start(self):
        """Start the scheduler"""
        with self.scheduler_lock:
            if not self.user_ids:
                logger.info("No scheduled sync users configured - scheduler not started")
                return
            if self.scheduler_thread is None or not self.scheduler_thread.is_alive():
                logger.info(f"Starting scheduler thread at {to_iso(get_utc_time())}...")
                self.scheduler_running = True
                self.scheduler.clear()
                self.scheduler.every(self.interval_minutes).minutes.do(self.run_scheduled_sync)
                self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
                self.scheduler_thread.start()
            else:
                logger.info("Scheduler already running")

    def stop(self):
        """Stop the scheduler"""
        with self.scheduler_lock:
            self.scheduler_running = False
            self.scheduler.clear()

        logger.info(f"Stopping scheduler at {to_iso(get_utc_time())}...")

    def is_running(self):
        """Check if scheduler is running"""
        with self.scheduler_lock:
            return bool(self.scheduler_running and self.scheduler_thread and self.scheduler_thread.is_alive())

    def _run_scheduler(self):
        """Run the scheduler loop"""
        logger.info(f"Scheduler started - forced sync every {self.interval_minutes} minutes "
                    f"for {len(self.user_ids)} users")

        while True:
            with self.scheduler_lock:
                if not self.scheduler_running:
                    break

            self.scheduler.run_pending()
            time.sleep(30)

        logger.info(f"Scheduler stopped at {to_iso(get_utc_time())}")

    def run_scheduled_sync(self):
        """Force a sync for every configured user; one user's failure never stops the rest"""
        credentials = self.credentials_provider()
        if credentials is None or not credentials.is_complete():
            logger.warning("⚠️ Scheduled sync skipped - Zoom credentials not configured")
            return

        for user_id in self.user_ids:
            logger.info(f"⏰ Running scheduled sync for {user_id}")
            result = self.sync_engine.sync(user_id, credentials, force_sync=True)

            if result.get('success'):
                logger.info(f"✅ Scheduled sync for {user_id} finished ({result.get('status')})")
            else:
                logger.warning(f"⚠️ Scheduled sync for {user_id} failed: {result.get('error')}")

        with self.scheduler_lock:
            self.last_scheduled_sync = get_utc_time()
            self.scheduled_sync_count += 1

    def get_scheduler_status(self):
        with self.scheduler_lock:
            next_run = self.scheduler.next_run if self.scheduler.jobs else None
            return {
                'running': bool(self.scheduler_running and self.scheduler_thread
                                and self.scheduler_thread.is_alive()),
                'interval_minutes': self.interval_minutes,
                'user_count': len(self.user_ids),
                'last_scheduled_sync': to_iso(self.last_scheduled_sync),
                'next_scheduled_sync': next_run.isoformat() if next_run else None,
                'scheduled_sync_count': self.scheduled_sync_count
            }
