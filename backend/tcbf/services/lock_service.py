"""Transient key/value stores used for job locks.

Two backings share the ``set_if_absent`` / ``get`` / ``delete`` contract:

``TransientLockStore``
    Rows in the ``transients`` table.  The primary key makes the INSERT the
    arbitration point: concurrent writers across processes race on it and
    exactly one wins, the others see ``IntegrityError``.  Rows past their
    ``expires_at`` read as absent and are reaped by the next
    ``set_if_absent`` on the same key.

``MemoryLockStore``
    A dict guarded by an ``asyncio.Lock`` for single-process use and tests.
    With ``reap_expired=False`` it keeps expired keys around, which is how a
    best-effort TTL backend behaves and what the expiry job's stale-lock
    recovery exists for.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tcbf.db.models import Transient


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


class TransientLockStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        now = self._clock()
        async with self._session_factory() as db:
            await db.execute(
                delete(Transient).where(and_(Transient.key == key, Transient.expires_at <= now))
            )
            db.add(Transient(key=key, value=str(value), expires_at=now + timedelta(seconds=ttl_seconds)))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
        return True

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as db:
            row = (
                await db.execute(select(Transient).where(Transient.key == key))
            ).scalar_one_or_none()
            if row is None or _as_utc(row.expires_at) <= self._clock():
                return None
            return row.value

    async def delete(self, key: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(Transient).where(Transient.key == key))
            await db.commit()


class MemoryLockStore:
    def __init__(self, reap_expired: bool = True, clock: Callable[[], float] = time.time) -> None:
        self._items: dict[str, tuple[str, float]] = {}
        self._guard = asyncio.Lock()
        self._reap_expired = reap_expired
        self._clock = clock

    def _live(self, key: str) -> tuple[str, float] | None:
        item = self._items.get(key)
        if item is None:
            return None
        if self._reap_expired and item[1] <= self._clock():
            del self._items[key]
            return None
        return item

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._guard:
            if self._live(key) is not None:
                return False
            self._items[key] = (str(value), self._clock() + ttl_seconds)
            return True

    async def get(self, key: str) -> str | None:
        async with self._guard:
            item = self._live(key)
            return item[0] if item else None

    async def delete(self, key: str) -> None:
        async with self._guard:
            self._items.pop(key, None)
