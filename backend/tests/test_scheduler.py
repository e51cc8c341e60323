"""Tests for the APScheduler-backed expiry schedule."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tcbf.runtime.scheduler import ExpiryScheduler


@pytest.fixture
def scheduler(make_job, recorder):
    sched = ExpiryScheduler(make_job(), recorder, interval_seconds=3600)
    yield sched
    if sched.running:
        sched.stop()


@pytest.mark.asyncio
class TestExpiryScheduler:
    async def test_job_id_is_cron_hook(self, scheduler):
        assert scheduler.job_id == "tcbf_expire_abandoned_carts"
        assert scheduler.interval_seconds == 3600

    async def test_schedule_is_idempotent(self, scheduler, recorder):
        assert scheduler.schedule() is True
        assert scheduler.schedule() is False
        assert recorder.find("expiry_job.scheduled") == [{
            "hook": "tcbf_expire_abandoned_carts",
            "interval": "hourly",
            "interval_seconds": 3600,
        }]

    async def test_unschedule(self, scheduler, recorder):
        assert scheduler.unschedule() is False
        scheduler.schedule()
        assert scheduler.unschedule() is True
        assert recorder.find("expiry_job.unscheduled") == [{"hook": "tcbf_expire_abandoned_carts"}]
        assert scheduler.next_run_time() is None

    async def test_pending_job_has_no_next_run(self, scheduler):
        scheduler.schedule()
        assert scheduler.next_run_time() is None

    async def test_start_registers_hourly_run(self, scheduler):
        before = datetime.now(timezone.utc)
        scheduler.start()

        assert scheduler.running is True
        next_run = scheduler.next_run_time()
        assert next_run is not None
        assert before + timedelta(minutes=59) <= next_run <= before + timedelta(minutes=61)
        scheduler.stop()

    async def test_start_twice_keeps_one_job(self, scheduler, recorder):
        scheduler.start()
        scheduler.start()
        assert len(recorder.find("expiry_job.scheduled")) == 1
        scheduler.stop()

    async def test_stop_removes_schedule(self, scheduler, recorder):
        scheduler.start()
        scheduler.stop()

        assert scheduler.running is False
        assert recorder.find("expiry_job.unscheduled") == [{"hook": "tcbf_expire_abandoned_carts"}]

    async def test_restart_after_stop_keeps_schedule(self, scheduler, recorder):
        scheduler.start()
        scheduler.stop()
        scheduler.start()
        # Let any shutdown queued on the loop by stop() run.
        await asyncio.sleep(0.01)

        assert scheduler.running is True
        assert scheduler.next_run_time() is not None
        assert len(recorder.find("expiry_job.scheduled")) == 2
        scheduler.stop()
