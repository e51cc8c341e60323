"""Booking entry API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tcbf.db.engine import get_db
from tcbf.schemas.entries import EntryCreate, EntryHistoryOut, EntryOut, EntryTransitionIn
from tcbf.services import entry_service

router = APIRouter()


@router.post("", response_model=EntryOut, status_code=201)
async def create_entry(body: EntryCreate, db: AsyncSession = Depends(get_db)):
    entry = await entry_service.create_entry(db, body.form_id)
    if body.in_cart:
        await entry_service.mark_in_cart(db, entry.entry_id)
        await db.refresh(entry)
    return entry


@router.get("/{entry_id}", response_model=EntryOut)
async def get_entry(entry_id: int, db: AsyncSession = Depends(get_db)):
    entry = await entry_service.get_entry(db, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@router.get("/{entry_id}/history", response_model=list[EntryHistoryOut])
async def get_entry_history(entry_id: int, db: AsyncSession = Depends(get_db)):
    if await entry_service.get_entry(db, entry_id) is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return await entry_service.get_state_history(db, entry_id)


@router.post("/{entry_id}/transition", response_model=EntryOut)
async def transition_entry(entry_id: int, body: EntryTransitionIn, db: AsyncSession = Depends(get_db)):
    """Apply a lifecycle transition (admin action / checkout integration)."""
    entry = await entry_service.get_entry(db, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    current = entry.state
    ok = await entry_service.transition_to(
        db, entry_id, body.state, body.reason, body.order_id, actor="api"
    )
    if not ok:
        raise HTTPException(
            status_code=409,
            detail=f"Transition {current} -> {body.state.value} not allowed",
        )
    await db.refresh(entry)
    return entry
