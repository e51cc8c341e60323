"""Entry expiry job: expires booking entries abandoned in the cart.

Every run scans the booking form for entries that have been ``in_cart``
longer than the TTL and moves them to ``expired``.

Algorithm
---------
1. Take the run lock (``tcbf_expiry_job_lock``).  If another run holds a
   fresh lock, skip.  A lock older than ``LOCK_TIMEOUT`` belongs to a run
   that died without releasing it: clear it and retry once.
2. Resolve the form and the TTL.  No form configured → skip.
3. Page through stale entries ``BATCH_SIZE`` at a time.  Before expiring an
   entry, re-read its state: checkout may have completed it after the page
   was fetched.  The expiry write itself only fires from ``in_cart``.
4. Release the lock whatever happened.

Lock release is unconditional (no ownership token).  A run delayed past
``LOCK_TIMEOUT`` can therefore delete a lock taken by a later run; with a
15 minute timeout against runs that take seconds this is accepted.

``run_manual()`` is the operator path: same processing, no lock, its own
events so manual runs are distinguishable in the logs.
"""

from __future__ import annotations

import time
import traceback
import uuid
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from tcbf.runtime.ports import EntryStore, EventLogger, LockStore, SettingsProvider
from tcbf.schemas.expiry import ExpiryRunResult
from tcbf.services.entry_service import EntryState
from tcbf.utils.logger import ctx_entry_id, ctx_job_run_id
from tcbf.utils.metrics import record_expiry_run
from tcbf.utils.tracing import get_tracer

_tracer = get_tracer("tcbf.expiry")


@dataclass
class _RunStats:
    expired: int = 0
    checked: int = 0


class EntryExpiryJob:
    """Scheduled expiry of abandoned ``in_cart`` entries.

    Usage::

        job = EntryExpiryJob(entry_store, lock_store, settings, events)
        result = await job.run()          # scheduled path, locked
        result = await job.run_manual()   # operator path, no lock
    """

    CRON_HOOK = "tcbf_expire_abandoned_carts"
    CRON_INTERVAL = "hourly"

    DEFAULT_TTL_SECONDS = 7200
    MIN_TTL_SECONDS = 1800
    MAX_TTL_SECONDS = 86400

    BATCH_SIZE = 50

    LOCK_KEY = "tcbf_expiry_job_lock"
    LOCK_TIMEOUT = 900

    def __init__(
        self,
        entry_store: EntryStore,
        lock_store: LockStore,
        settings: SettingsProvider,
        event_logger: EventLogger,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        ttl_filter: Callable[[int], int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries = entry_store
        self._locks = lock_store
        self._settings = settings
        self._events = event_logger
        self._ttl_seconds = ttl_seconds
        self._ttl_filter = ttl_filter
        self._clock = clock

    # ── Configuration ───────────────────────────────────────────

    def get_form_id(self) -> int:
        return int(self._settings.get_form_id())

    def get_ttl_seconds(self) -> int:
        """Configured TTL after the override hook, clamped to 30 min .. 24 h.

        A non-numeric override counts as 0 and so lands on the minimum.
        """
        ttl = self._ttl_seconds
        if self._ttl_filter is not None:
            ttl = self._ttl_filter(ttl)
        try:
            seconds = int(float(ttl))
        except (TypeError, ValueError, OverflowError):
            self._log("expiry_job.ttl_invalid", {"ttl": repr(ttl)}, level="warning")
            seconds = 0
        return max(self.MIN_TTL_SECONDS, min(self.MAX_TTL_SECONDS, seconds))

    def _log(self, event: str, fields: Mapping[str, Any] | None = None, level: str = "info") -> None:
        # Event sinks are fire-and-forget; none of their failures reach the run.
        with suppress(Exception):
            self._events.log(event, fields, level=level)

    # ── Scheduled run ───────────────────────────────────────────

    async def run(self) -> ExpiryRunResult:
        """Locked run, the scheduler's entry point.  Never raises."""
        run_id = uuid.uuid4().hex[:12]
        token = ctx_job_run_id.set(run_id)
        try:
            with _tracer.start_as_current_span("expiry_job.run") as span:
                span.set_attribute("expiry.run_id", run_id)
                result = await self._run_locked()
                _annotate_span(span, result)
                return result
        finally:
            ctx_job_run_id.reset(token)

    async def _run_locked(self) -> ExpiryRunResult:
        try:
            acquired = await self._acquire_lock()
        except Exception as exc:
            self._log("expiry_job.error", {
                "stage": "acquire_lock",
                "error": str(exc),
                "trace": traceback.format_exc(),
            }, level="error")
            record_expiry_run("error")
            return ExpiryRunResult(status="error", error=str(exc))

        if not acquired:
            self._log("expiry_job.skipped.locked", {
                "reason": "Another instance is already running",
            })
            record_expiry_run("skipped_locked")
            return ExpiryRunResult(status="skipped_locked")

        try:
            self._log("expiry_job.started", {"timestamp": int(self._clock())})
            start = time.perf_counter()
            stats = _RunStats()
            form_id: int | None = None
            ttl: int | None = None
            try:
                form_id = self.get_form_id()
                ttl = self.get_ttl_seconds()

                if form_id <= 0:
                    self._log("expiry_job.skipped.no_form", {
                        "reason": "No form ID configured",
                    })
                    record_expiry_run("skipped_no_form")
                    return ExpiryRunResult(status="skipped_no_form", form_id=form_id, ttl_seconds=ttl)

                await self._process_expired_entries(form_id, ttl, stats)
            except Exception as exc:
                duration_s = time.perf_counter() - start
                self._log("expiry_job.error", {
                    "form_id": form_id,
                    "expired_count": stats.expired,
                    "checked_count": stats.checked,
                    "error": str(exc),
                    "trace": traceback.format_exc(),
                }, level="error")
                record_expiry_run("error", expired=stats.expired, checked=stats.checked,
                                  duration_seconds=duration_s)
                return ExpiryRunResult(
                    status="error",
                    form_id=form_id,
                    ttl_seconds=ttl,
                    expired_count=stats.expired,
                    checked_count=stats.checked,
                    duration_ms=round(duration_s * 1000, 2),
                    error=str(exc),
                )

            duration_s = time.perf_counter() - start
            self._log("expiry_job.completed", {
                "form_id": form_id,
                "ttl_seconds": ttl,
                "expired_count": stats.expired,
                "checked_count": stats.checked,
                "duration_ms": round(duration_s * 1000, 2),
            })
            record_expiry_run("completed", expired=stats.expired, checked=stats.checked,
                              duration_seconds=duration_s)
            return ExpiryRunResult(
                status="completed",
                form_id=form_id,
                ttl_seconds=ttl,
                expired_count=stats.expired,
                checked_count=stats.checked,
                duration_ms=round(duration_s * 1000, 2),
            )
        finally:
            await self._release_lock()

    # ── Manual run ──────────────────────────────────────────────

    async def run_manual(self) -> ExpiryRunResult:
        """Operator-triggered run.  Bypasses the lock; store errors propagate."""
        token = ctx_job_run_id.set(uuid.uuid4().hex[:12])
        try:
            with _tracer.start_as_current_span("expiry_job.manual_run") as span:
                result = await self._run_manual()
                _annotate_span(span, result)
                return result
        finally:
            ctx_job_run_id.reset(token)

    async def _run_manual(self) -> ExpiryRunResult:
        self._log("expiry_job.manual_run", {"timestamp": int(self._clock())})

        form_id = self.get_form_id()
        ttl = self.get_ttl_seconds()

        if form_id <= 0:
            self._log("expiry_job.manual_run.no_form", {
                "reason": "No form ID configured",
            })
            record_expiry_run("skipped_no_form", trigger="manual")
            return ExpiryRunResult(status="skipped_no_form", manual=True, form_id=form_id, ttl_seconds=ttl)

        start = time.perf_counter()
        stats = _RunStats()
        await self._process_expired_entries(form_id, ttl, stats)
        duration_s = time.perf_counter() - start

        self._log("expiry_job.manual_run.completed", {
            "form_id": form_id,
            "ttl_seconds": ttl,
            "expired_count": stats.expired,
            "checked_count": stats.checked,
            "duration_ms": round(duration_s * 1000, 2),
        })
        record_expiry_run("completed", trigger="manual", expired=stats.expired,
                          checked=stats.checked, duration_seconds=duration_s)
        return ExpiryRunResult(
            status="completed",
            manual=True,
            form_id=form_id,
            ttl_seconds=ttl,
            expired_count=stats.expired,
            checked_count=stats.checked,
            duration_ms=round(duration_s * 1000, 2),
        )

    # ── Batch processing ────────────────────────────────────────

    async def _process_expired_entries(self, form_id: int, ttl_seconds: int, stats: _RunStats) -> None:
        offset = 0
        while True:
            entries = await self._entries.query_stale(form_id, ttl_seconds, self.BATCH_SIZE, offset)
            batch_size = len(entries)
            stats.checked += batch_size

            for entry in entries:
                entry_id = int(entry.id or 0)
                if entry_id <= 0:
                    continue

                entry_token = ctx_entry_id.set(entry_id)
                try:
                    # Re-check: checkout may have moved the entry since the query.
                    if await self._entries.get_state(entry_id) != EntryState.IN_CART:
                        continue

                    if await self._entries.transition_to_expired(entry_id):
                        stats.expired += 1
                        self._log("expiry_job.entry_expired", {"entry_id": entry_id})
                finally:
                    ctx_entry_id.reset(entry_token)

            offset += self.BATCH_SIZE
            if batch_size != self.BATCH_SIZE:
                break

    # ── Locking ─────────────────────────────────────────────────

    async def _acquire_lock(self) -> bool:
        now = int(self._clock())
        if await self._locks.set_if_absent(self.LOCK_KEY, str(now), self.LOCK_TIMEOUT):
            return True

        lock_time = _parse_timestamp(await self._locks.get(self.LOCK_KEY))
        if lock_time > 0 and (now - lock_time) > self.LOCK_TIMEOUT:
            await self._locks.delete(self.LOCK_KEY)
            locked = await self._locks.set_if_absent(self.LOCK_KEY, str(int(self._clock())), self.LOCK_TIMEOUT)
            self._log("expiry_job.lock_forced", {
                "reason": "Stale lock detected and cleared",
                "lock_age_seconds": now - lock_time,
                "reacquired": locked,
            }, level="warning")
            return locked
        return False

    async def _release_lock(self) -> None:
        try:
            await self._locks.delete(self.LOCK_KEY)
        except Exception as exc:
            # The lock expires on its own after LOCK_TIMEOUT.
            self._log("expiry_job.lock_release_failed", {"error": str(exc)}, level="error")

    async def is_locked(self) -> bool:
        return await self._locks.get(self.LOCK_KEY) is not None


def _parse_timestamp(value: str | None) -> int:
    try:
        return int(float(value)) if value is not None else 0
    except (TypeError, ValueError, OverflowError):
        return 0


def _annotate_span(span, result: ExpiryRunResult) -> None:
    span.set_attribute("expiry.status", result.status)
    span.set_attribute("expiry.expired_count", result.expired_count)
    span.set_attribute("expiry.checked_count", result.checked_count)
    if result.form_id is not None:
        span.set_attribute("expiry.form_id", result.form_id)
