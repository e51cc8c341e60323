"""Entry lifecycle service: state machine for booking form entries.

An entry moves through::

    created → in_cart → paid → cancelled / refunded
                      ↘ removed | expired | payment_failed

Every successful transition stamps the matching ``*_at`` column and appends
a row to ``entry_state_history``.  Transitions are compare-and-swap: the
UPDATE is conditioned on the state that was read, so a concurrent writer
(checkout completing while the expiry job runs) makes the loser return
``False`` rather than overwrite.

Once ``paid``, an entry can never go back to ``removed`` or ``expired``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tcbf.db.models import Entry, EntryStateHistory
from tcbf.runtime.ports import EntryRef
from tcbf.utils.event_log import build_event_logger

events = build_event_logger("tcbf.entries")


class EntryState(str, Enum):
    CREATED = "created"                 # entry submitted, not yet in cart
    IN_CART = "in_cart"                 # added to cart
    PAID = "paid"                       # order created and paid
    REMOVED = "removed"                 # removed from cart
    EXPIRED = "expired"                 # cart abandoned past TTL
    PAYMENT_FAILED = "payment_failed"   # order created, payment failed
    CANCELLED = "cancelled"             # order cancelled
    REFUNDED = "refunded"               # order refunded


class RemovalReason(str, Enum):
    USER_REMOVED = "user_removed"
    CART_EMPTIED = "cart_emptied"
    EXPIRED_JOB = "expired_job"
    CHECKOUT_COMPLETE = "checkout_completed"
    ADMIN_ACTION = "admin_action"


VALID_TRANSITIONS: dict[EntryState, frozenset[EntryState]] = {
    EntryState.CREATED: frozenset({EntryState.IN_CART, EntryState.EXPIRED}),
    EntryState.IN_CART: frozenset({
        EntryState.PAID,
        EntryState.REMOVED,
        EntryState.EXPIRED,
        EntryState.PAYMENT_FAILED,
    }),
    EntryState.PAID: frozenset({EntryState.CANCELLED, EntryState.REFUNDED}),
    EntryState.REMOVED: frozenset(),
    EntryState.EXPIRED: frozenset(),
    EntryState.PAYMENT_FAILED: frozenset({EntryState.PAID, EntryState.EXPIRED, EntryState.REMOVED}),
    EntryState.CANCELLED: frozenset({EntryState.REFUNDED, EntryState.PAID}),
    EntryState.REFUNDED: frozenset(),
}

# Column stamped when an entry enters each state.
_TIMESTAMP_COLUMNS: dict[EntryState, str] = {
    EntryState.IN_CART: "in_cart_at",
    EntryState.PAID: "paid_at",
    EntryState.REMOVED: "removed_at",
    EntryState.EXPIRED: "expired_at",
    EntryState.CANCELLED: "cancelled_at",
    EntryState.REFUNDED: "refunded_at",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_state(value: str | EntryState | None) -> EntryState | None:
    if not value:
        return EntryState.CREATED
    try:
        return EntryState(value)
    except ValueError:
        return None


def is_valid_transition(current_state: str | EntryState | None, new_state: str | EntryState) -> bool:
    """True when *new_state* is reachable from *current_state* in one step.

    An empty current state counts as ``created``.
    """
    current = _coerce_state(current_state)
    try:
        target = EntryState(new_state)
    except ValueError:
        return False
    if current is None:
        return False
    return target in VALID_TRANSITIONS[current]


# ── Reads ───────────────────────────────────────────────────────


async def get_entry(db: AsyncSession, entry_id: int) -> Entry | None:
    if entry_id <= 0:
        return None
    return await db.get(Entry, entry_id)


async def get_state(db: AsyncSession, entry_id: int) -> str:
    """Current state straight from the database; ``""`` if the entry is unknown."""
    if entry_id <= 0:
        return ""
    state = await db.scalar(select(Entry.state).where(Entry.entry_id == entry_id))
    return state or ""


async def get_order_id(db: AsyncSession, entry_id: int) -> int:
    if entry_id <= 0:
        return 0
    order_id = await db.scalar(select(Entry.order_id).where(Entry.entry_id == entry_id))
    return order_id if order_id and order_id > 0 else 0


async def is_paid(db: AsyncSession, entry_id: int) -> bool:
    return await get_state(db, entry_id) == EntryState.PAID


async def is_in_cart(db: AsyncSession, entry_id: int) -> bool:
    return await get_state(db, entry_id) == EntryState.IN_CART


async def get_state_history(db: AsyncSession, entry_id: int) -> list[EntryStateHistory]:
    if entry_id <= 0:
        return []
    result = await db.execute(
        select(EntryStateHistory)
        .where(EntryStateHistory.entry_id == entry_id)
        .order_by(EntryStateHistory.history_id)
    )
    return list(result.scalars().all())


async def get_entries_by_state(
    db: AsyncSession,
    state: str | EntryState,
    form_id: int,
    page_size: int = 50,
    offset: int = 0,
) -> list[Entry]:
    stmt = (
        select(Entry)
        .where(and_(Entry.form_id == form_id, Entry.state == EntryState(state).value))
        .order_by(Entry.created_at.desc(), Entry.entry_id.desc())
        .limit(page_size)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_stale_in_cart_entries(
    db: AsyncSession,
    form_id: int,
    ttl_seconds: int = 7200,
    page_size: int = 50,
    offset: int = 0,
    now: datetime | None = None,
) -> list[Entry]:
    """``in_cart`` entries of *form_id* that entered the cart more than *ttl_seconds* ago."""
    cutoff = (now or _utcnow()) - timedelta(seconds=ttl_seconds)
    stmt = (
        select(Entry)
        .where(
            and_(
                Entry.form_id == form_id,
                Entry.state == EntryState.IN_CART.value,
                Entry.in_cart_at.is_not(None),
                Entry.in_cart_at < cutoff,
            )
        )
        .order_by(Entry.entry_id)
        .limit(page_size)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ── Writes ──────────────────────────────────────────────────────


async def create_entry(db: AsyncSession, form_id: int) -> Entry:
    entry = Entry(form_id=form_id, state=EntryState.CREATED.value)
    db.add(entry)
    await db.flush()
    await db.refresh(entry)
    return entry


async def transition_to(
    db: AsyncSession,
    entry_id: int,
    new_state: str | EntryState,
    reason: str = "",
    order_id: int = 0,
    expected_state: str | EntryState | None = None,
    actor: str = "system",
) -> bool:
    """Move *entry_id* to *new_state*; return whether the transition happened.

    When *expected_state* is given the transition only fires from that state.
    The caller owns the transaction (commit / rollback).
    """
    if entry_id <= 0:
        events.log("entry_state.transition.invalid_entry", {"entry_id": entry_id})
        return False

    stored = await db.scalar(select(Entry.state).where(Entry.entry_id == entry_id))
    if stored is None:
        events.log("entry_state.transition.invalid_entry", {"entry_id": entry_id})
        return False

    current = stored or EntryState.CREATED.value
    target = EntryState(new_state)

    if expected_state is not None and current != EntryState(expected_state).value:
        events.log("entry_state.transition.unexpected_state", {
            "entry_id": entry_id,
            "current_state": current,
            "expected_state": EntryState(expected_state).value,
            "new_state": target.value,
        })
        return False

    if current == EntryState.PAID.value and target in (EntryState.REMOVED, EntryState.EXPIRED):
        events.log("entry_state.transition.guard_paid", {
            "entry_id": entry_id,
            "current_state": current,
            "new_state": target.value,
            "blocked": True,
        })
        return False

    if not is_valid_transition(current, target):
        events.log("entry_state.transition.invalid", {
            "entry_id": entry_id,
            "current_state": current,
            "new_state": target.value,
            "reason": reason,
        })
        return False

    now = _utcnow()
    values: dict[str, object] = {"state": target.value, "updated_at": now}
    if target in _TIMESTAMP_COLUMNS:
        values[_TIMESTAMP_COLUMNS[target]] = now
    if target == EntryState.IN_CART:
        values["group_id"] = entry_id
    elif target == EntryState.PAID and order_id > 0:
        values["order_id"] = order_id
    elif target == EntryState.REMOVED and reason:
        values["removed_reason"] = reason

    result = await db.execute(
        update(Entry)
        .where(and_(Entry.entry_id == entry_id, Entry.state == stored))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Someone else moved the entry between our read and our write.
        events.log("entry_state.transition.conflict", {
            "entry_id": entry_id,
            "from": current,
            "to": target.value,
        })
        return False

    db.add(EntryStateHistory(
        entry_id=entry_id,
        from_state=current,
        to_state=target.value,
        reason=reason or None,
        order_id=order_id or None,
        actor=actor,
        ts=now,
    ))
    await db.flush()

    events.log("entry_state.transition.success", {
        "entry_id": entry_id,
        "from": current,
        "to": target.value,
        "reason": reason,
        "order_id": order_id,
    })
    return True


async def mark_in_cart(db: AsyncSession, entry_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.IN_CART, "added_to_cart")


async def mark_paid(db: AsyncSession, entry_id: int, order_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.PAID, "order_paid", order_id)


async def mark_removed(db: AsyncSession, entry_id: int, reason: str = RemovalReason.USER_REMOVED.value) -> bool:
    return await transition_to(db, entry_id, EntryState.REMOVED, reason)


async def mark_expired(db: AsyncSession, entry_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.EXPIRED, RemovalReason.EXPIRED_JOB.value)


async def mark_payment_failed(db: AsyncSession, entry_id: int, order_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.PAYMENT_FAILED, "payment_failed", order_id)


async def mark_cancelled(db: AsyncSession, entry_id: int, order_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.CANCELLED, "order_cancelled", order_id)


async def mark_refunded(db: AsyncSession, entry_id: int, order_id: int) -> bool:
    return await transition_to(db, entry_id, EntryState.REFUNDED, "order_refunded", order_id)


# ── Expiry job adapter ──────────────────────────────────────────


class SqlEntryStore:
    """Entry store for the expiry job, one short session per call.

    Each call opens its own session so ``get_state`` always reads committed
    data rather than a session's identity map.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def query_stale(self, form_id: int, ttl_seconds: int, limit: int, offset: int) -> list[EntryRef]:
        async with self._session_factory() as db:
            rows = await get_stale_in_cart_entries(
                db, form_id, ttl_seconds, page_size=limit, offset=offset, now=self._clock()
            )
        return [EntryRef(id=row.entry_id, form_id=row.form_id, in_cart_at=row.in_cart_at) for row in rows]

    async def get_state(self, entry_id: int) -> str:
        async with self._session_factory() as db:
            return await get_state(db, entry_id)

    async def transition_to_expired(self, entry_id: int) -> bool:
        async with self._session_factory() as db:
            changed = await transition_to(
                db,
                entry_id,
                EntryState.EXPIRED,
                RemovalReason.EXPIRED_JOB.value,
                expected_state=EntryState.IN_CART,
                actor="expiry_job",
            )
            if changed:
                await db.commit()
            else:
                await db.rollback()
            return changed
