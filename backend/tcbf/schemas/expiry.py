"""Pydantic models for the entry expiry job."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

RunStatus = Literal["completed", "skipped_locked", "skipped_no_form", "error"]


class ExpiryRunResult(BaseModel):
    """Outcome of one expiry run (scheduled or manual)."""
    status: RunStatus
    manual: bool = False
    form_id: int | None = None
    ttl_seconds: int | None = None
    expired_count: int = 0
    checked_count: int = 0
    duration_ms: float | None = None
    error: str | None = None


class ExpiryStatusOut(BaseModel):
    is_locked: bool
    next_run_at: datetime | None = None
    form_id: int
    ttl_seconds: int
    interval_seconds: int
    scheduled: bool
