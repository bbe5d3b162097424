"""Background scheduler for periodic smart sync"""

import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from issuemirror.config import settings
from issuemirror.models.base import SessionLocal
from issuemirror.services.cancellation import SyncCancelled
from issuemirror.services.github_client import GitHubClient
from issuemirror.services.sync_service import SyncService

logger = logging.getLogger(__name__)

JOB_ID = "smart_sync"


class SyncScheduler:
    """Runs a smart sync of all configured repositories at a fixed interval"""

    def __init__(self):
        self.scheduler = BackgroundScheduler()
        # Set on shutdown so a running job stops between issues.
        self.cancel_event = threading.Event()

    def start(self):
        """Start the scheduler"""
        if not settings.scheduled_sync_enabled:
            logger.info("Scheduled sync disabled")
            return

        self.cancel_event.clear()
        self.scheduler.start()
        self.scheduler.add_job(
            func=self._smart_sync_job,
            trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled smart sync every {settings.sync_interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler"""
        if not self.scheduler.running:
            return
        self.cancel_event.set()
        self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")

    def _smart_sync_job(self):
        """Job function for the periodic smart sync"""
        db = SessionLocal()
        client = GitHubClient.from_settings()
        service = SyncService(db, client)
        try:
            logger.info("Running scheduled smart sync")
            stats = service.sync_all_repositories(
                smart=True, cancel_event=self.cancel_event
            )
            logger.info(f"Scheduled smart sync completed: {stats.to_dict()}")
        except SyncCancelled:
            logger.info("Scheduled smart sync cancelled")
        except Exception as e:
            logger.error(f"Scheduled smart sync failed: {e}")
        finally:
            service.close()
            client.close()
            db.close()


# Global scheduler instance
scheduler = SyncScheduler()
