"""Expiry scheduler: registers the entry expiry job with APScheduler.

The job fires every ``ENTRY_EXPIRY_INTERVAL_SECONDS`` (hourly).  Several
processes may run this scheduler against the same database; the job's own
lock makes sure only one of them processes entries per tick.
"""

from __future__ import annotations

import logging
from datetime import datetime

from tcbf.runtime.expiry_job import EntryExpiryJob
from tcbf.runtime.ports import EventLogger

logger = logging.getLogger("tcbf.scheduler")


class ExpiryScheduler:
    """Thin asyncio wrapper around APScheduler's AsyncIOScheduler."""

    def __init__(self, job: EntryExpiryJob, event_logger: EventLogger, interval_seconds: int = 3600) -> None:
        self._scheduler = None
        self._job = job
        self._events = event_logger
        self._interval_seconds = interval_seconds

    @property
    def _aps(self):
        # Built on first use so it binds to the event loop that is running then.
        if self._scheduler is None:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import]
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        return self._scheduler

    @property
    def job_id(self) -> str:
        return self._job.CRON_HOOK

    @property
    def interval_seconds(self) -> int:
        return self._interval_seconds

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> None:
        if not self._aps.running:
            self._aps.start()
        self.schedule()
        logger.info("ExpiryScheduler started (interval=%ds)", self._interval_seconds)

    def stop(self) -> None:
        self.unschedule()
        if self.running:
            self._scheduler.shutdown(wait=False)
        # shutdown() only queues the stop on the loop; the next start() builds a fresh scheduler.
        self._scheduler = None
        logger.info("ExpiryScheduler stopped")

    # ── Job registration ────────────────────────────────────────

    def schedule(self) -> bool:
        """Register the expiry job unless it already is.  Returns True when added."""
        if self._aps.get_job(self.job_id) is not None:
            return False
        self._aps.add_job(
            self._job.run,
            trigger="interval",
            seconds=self._interval_seconds,
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._events.log("expiry_job.scheduled", {
            "hook": self.job_id,
            "interval": self._job.CRON_INTERVAL,
            "interval_seconds": self._interval_seconds,
        })
        return True

    def unschedule(self) -> bool:
        """Remove the expiry job.  Returns True when a job was removed."""
        if self._scheduler is None or self._scheduler.get_job(self.job_id) is None:
            return False
        self._scheduler.remove_job(self.job_id)
        self._events.log("expiry_job.unscheduled", {"hook": self.job_id})
        return True

    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(self.job_id)
        if job is None:
            return None
        # Pending jobs (scheduler not started yet) have no next_run_time.
        return getattr(job, "next_run_time", None)


# ── Singletons ───────────────────────────────────────────────────
#
# Composition root: the job gets its SQL stores, settings and event logger
# here.  Imported by main.py, the API and the worker process.

def build_expiry_job() -> EntryExpiryJob:
    from tcbf.config import settings
    from tcbf.db.engine import async_session
    from tcbf.services.entry_service import SqlEntryStore
    from tcbf.services.lock_service import TransientLockStore
    from tcbf.utils.event_log import build_event_logger

    return EntryExpiryJob(
        entry_store=SqlEntryStore(async_session),
        lock_store=TransientLockStore(async_session),
        settings=settings,
        event_logger=build_event_logger("tcbf.expiry"),
        ttl_seconds=settings.ENTRY_EXPIRY_TTL_SECONDS,
    )


def build_expiry_scheduler(job: EntryExpiryJob) -> ExpiryScheduler:
    from tcbf.config import settings
    from tcbf.utils.event_log import build_event_logger

    return ExpiryScheduler(
        job,
        build_event_logger("tcbf.scheduler"),
        interval_seconds=settings.ENTRY_EXPIRY_INTERVAL_SECONDS,
    )


expiry_job = build_expiry_job()
expiry_scheduler = build_expiry_scheduler(expiry_job)
