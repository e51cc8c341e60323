"""Recent structured events, kept while DEBUG is on."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tcbf.utils.event_log import RecentEvents

router = APIRouter()


class DebugEventOut(BaseModel):
    time: str
    context: str
    data: str


def get_recent_events() -> RecentEvents:
    from tcbf.utils.event_log import recent_events
    return recent_events


@router.get("/logs", response_model=list[DebugEventOut])
async def list_debug_events(buffer: RecentEvents = Depends(get_recent_events)):
    """Newest first."""
    return list(reversed(buffer.rows()))


@router.delete("/logs", status_code=204)
async def clear_debug_events(buffer: RecentEvents = Depends(get_recent_events)):
    buffer.clear()
