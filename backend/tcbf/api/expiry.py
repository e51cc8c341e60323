"""Entry expiry job API: operator status and manual runs.

Endpoints
---------
GET  /api/expiry/status  lock state and next scheduled run
POST /api/expiry/run     run the job now, bypassing the lock
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from tcbf.runtime.expiry_job import EntryExpiryJob
from tcbf.runtime.scheduler import ExpiryScheduler
from tcbf.schemas.expiry import ExpiryRunResult, ExpiryStatusOut

logger = logging.getLogger("tcbf.api.expiry")
router = APIRouter()


def get_expiry_job() -> EntryExpiryJob:
    from tcbf.runtime.scheduler import expiry_job
    return expiry_job


def get_expiry_scheduler() -> ExpiryScheduler:
    from tcbf.runtime.scheduler import expiry_scheduler
    return expiry_scheduler


@router.get("/status", response_model=ExpiryStatusOut)
async def expiry_status(
    job: EntryExpiryJob = Depends(get_expiry_job),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    next_run = scheduler.next_run_time()
    return ExpiryStatusOut(
        is_locked=await job.is_locked(),
        next_run_at=next_run,
        form_id=job.get_form_id(),
        ttl_seconds=job.get_ttl_seconds(),
        interval_seconds=scheduler.interval_seconds,
        scheduled=next_run is not None,
    )


@router.post("/run", response_model=ExpiryRunResult)
async def run_expiry_now(job: EntryExpiryJob = Depends(get_expiry_job)):
    """Manual run for operators and testing.  Does not take the run lock."""
    try:
        return await job.run_manual()
    except Exception as exc:
        logger.exception("Manual expiry run failed")
        raise HTTPException(status_code=500, detail=f"Manual expiry run failed: {exc}") from exc
