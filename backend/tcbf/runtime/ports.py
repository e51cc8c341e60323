"""Collaborator contracts consumed by the entry expiry job.

The job never reaches for globals: its entry store, lock store, settings and
event logger are handed to it at construction time.  Any object satisfying
these protocols will do; the SQL-backed implementations live in
``tcbf.services``; tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol


@dataclass(frozen=True)
class EntryRef:
    """Minimal view of an entry returned by a stale query."""

    id: int
    form_id: int | None = None
    in_cart_at: datetime | None = None


class EntryStore(Protocol):
    async def query_stale(self, form_id: int, ttl_seconds: int, limit: int, offset: int) -> list[EntryRef]:
        """Entries of *form_id* in ``in_cart`` whose ``in_cart_at`` is older than now − ttl."""
        ...

    async def get_state(self, entry_id: int) -> str:
        """Current state, read fresh; ``""`` when unknown."""
        ...

    async def transition_to_expired(self, entry_id: int) -> bool:
        """Set state to ``expired`` iff it is currently ``in_cart``."""
        ...


class LockStore(Protocol):
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def delete(self, key: str) -> None: ...


class SettingsProvider(Protocol):
    def get_form_id(self) -> int: ...


class EventLogger(Protocol):
    def log(self, event: str, fields: Mapping[str, Any] | None = None, level: str = "info") -> None: ...
