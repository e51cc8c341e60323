"""Pydantic models for booking entries."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from tcbf.services.entry_service import EntryState


class EntryCreate(BaseModel):
    form_id: int = Field(gt=0)
    in_cart: bool = False  # also move the new entry into the cart


class EntryOut(BaseModel):
    entry_id: int
    form_id: int
    state: str
    group_id: int | None = None
    order_id: int | None = None
    removed_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    in_cart_at: datetime | None = None
    paid_at: datetime | None = None
    removed_at: datetime | None = None
    expired_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None

    model_config = {"from_attributes": True}


class EntryTransitionIn(BaseModel):
    state: EntryState
    reason: str = ""
    order_id: int = Field(default=0, ge=0)


class EntryHistoryOut(BaseModel):
    history_id: int
    from_state: str
    to_state: str
    reason: str | None = None
    order_id: int | None = None
    actor: str
    ts: datetime

    model_config = {"from_attributes": True}
