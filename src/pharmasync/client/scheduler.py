"""Scheduler for the daily automatic backup.

This module provides:
- AutoBackupScheduler: Daily backup at a fixed pharmacy-local time (UTC+8)
- LAST_BACKUP_KEY: Persistence key of the "last automatic backup" marker

The job asks the backend to create a backup, then records the backup
metadata through the WriteRouter (remote store only, queued if the remote
leg fails). A date marker in the KeyValueStore makes sure the backup runs
at most once per pharmacy-local calendar day, across restarts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from pharmasync.core.timezone import PHARMACY_TZ, pharmacy_date_key, to_pharmacy_time

if TYPE_CHECKING:
    from pharmasync.client.backend import BackupResult, BackupService
    from pharmasync.client.state import KeyValueStore
    from pharmasync.client.sync.router import WriteRouter

logger = logging.getLogger(__name__)

LAST_BACKUP_KEY = "last_auto_backup"


class AutoBackupScheduler:
    """Runs the automatic backup once a day.

    Usage:
        scheduler = AutoBackupScheduler(backend, router, store)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        backup_service: BackupService,
        router: WriteRouter,
        store: KeyValueStore,
        hour: int = 22,
        minute: int = 30,
        user_id: int | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            backup_service: Creates the backup file.
            router: Records backup metadata.
            store: Holds the last-run marker.
            hour: Hour (UTC+8) to run the backup (0-23).
            minute: Minute to run the backup (0-59).
            user_id: User the backups are attributed to.
        """
        self._backup_service = backup_service
        self._router = router
        self._store = store
        self._hour = hour
        self._minute = minute
        self._user_id = user_id
        self._scheduler: BackgroundScheduler | None = None

    def last_run_date(self) -> str | None:
        """Get the pharmacy-local date of the last automatic backup."""
        raw = self._store.load(LAST_BACKUP_KEY)
        return raw.decode("utf-8") if raw is not None else None

    def is_due(self, now: datetime | None = None) -> bool:
        """Check whether the backup should run at ``now``.

        Args:
            now: Moment to check (default: current time).

        Returns:
            True at the target hour and minute (UTC+8) if no backup ran today.
        """
        local = to_pharmacy_time(now) if now is not None else datetime.now(PHARMACY_TZ)
        if (local.hour, local.minute) != (self._hour, self._minute):
            return False
        return self.last_run_date() != pharmacy_date_key(local)

    def check_and_run(self, now: datetime | None = None) -> bool:
        """Run the backup if it is due.

        Returns:
            True if a backup attempt was made.
        """
        if not self.is_due(now):
            return False
        self.run_now(now)
        return True

    def run_now(
        self,
        now: datetime | None = None,
        user_id: int | None = None,
    ) -> BackupResult | None:
        """Run the backup immediately, ignoring the time of day.

        Args:
            now: Moment used for the date marker (default: current time).
            user_id: Overrides the user the backup is attributed to.

        Returns:
            The backend's result, or None if the backend could not be reached.
        """
        today = pharmacy_date_key(now)
        if user_id is None:
            user_id = self._user_id
        logger.info("Starting automatic backup")
        try:
            result = self._backup_service.create_backup(user_id)
        except Exception:
            logger.exception("Error running automatic backup")
            return None

        if not result.success:
            logger.error("Automatic backup failed: %s", result.message)
            return result

        self._store.save(LAST_BACKUP_KEY, today.encode("utf-8"))

        if result.skipped:
            logger.warning("Automatic backup skipped by server: %s", result.message)
            return result

        logger.info("Automatic backup successful: %s", result.message)
        if result.filename and result.file_size:
            saved = self._router.save_backup_file(result.filename, result.file_size, "Auto")
            logger.info(
                "Auto backup %s recorded (%s, %s)",
                result.filename,
                saved.outcome.value,
                saved.location.value,
            )
        return result

    def _backup_job(self) -> None:
        """Job function for the scheduled backup.

        The cron trigger already fires at the target time; only the
        once-per-day marker is checked here.
        """
        try:
            if self.last_run_date() == pharmacy_date_key():
                logger.debug("Automatic backup already ran today")
                return
            self.run_now()
        except Exception:
            logger.exception("Error during scheduled backup")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler(timezone=PHARMACY_TZ)
        self._scheduler.add_job(
            self._backup_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute, timezone=PHARMACY_TZ),
            id="auto_backup",
            name="Daily automatic backup",
            replace_existing=True,
            misfire_grace_time=60,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "Backup scheduler started (daily at %02d:%02d UTC+8)",
            self._hour,
            self._minute,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Backup scheduler stopped")
