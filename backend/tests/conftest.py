"""Shared fixtures for backend tests."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point the process-wide settings at a throwaway database before any tcbf
# module builds its engine, and keep the scheduler out of the way.
_TMP_DIR = tempfile.mkdtemp(prefix="tcbf-tests-")
os.environ["TCBF_DB_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'tcbf.db')}"
os.environ["ENTRY_EXPIRY_SCHEDULER_ENABLED"] = "false"
os.environ["DEBUG"] = "false"

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from tcbf.db.models import Base, Entry  # noqa: E402
from tcbf.runtime.expiry_job import EntryExpiryJob  # noqa: E402
from tcbf.runtime.ports import EntryRef  # noqa: E402
from tcbf.services.lock_service import MemoryLockStore  # noqa: E402
from tcbf.utils.metrics import metrics  # noqa: E402

NOW = 1_760_000_000  # fixed epoch second for job clocks


# ── In-memory collaborators ─────────────────────────────────────


class FakeEntryStore:
    """Entry store over a dict of ``{entry_id: {"state", "form_id", "in_cart_at"}}``.

    ``in_cart_at`` is an epoch second compared against ``now``.  The hooks
    ``before_get_state`` / ``before_transition`` let a test change an entry
    between the job's query and its writes, the way a checkout would.
    """

    def __init__(self, now: int = NOW) -> None:
        self.now = now
        self.entries: dict[int, dict] = {}
        self.queries: list[tuple[int, int, int, int]] = []
        self.state_reads: list[int] = []
        self.before_get_state = None
        self.before_transition = None

    def add(self, entry_id: int, state: str = "in_cart", age_seconds: int | None = 3 * 3600, form_id: int = 44):
        in_cart_at = self.now - age_seconds if age_seconds is not None else None
        self.entries[entry_id] = {"state": state, "form_id": form_id, "in_cart_at": in_cart_at}

    def state_of(self, entry_id: int) -> str:
        return self.entries[entry_id]["state"]

    async def query_stale(self, form_id: int, ttl_seconds: int, limit: int, offset: int) -> list[EntryRef]:
        self.queries.append((form_id, ttl_seconds, limit, offset))
        cutoff = self.now - ttl_seconds
        stale = sorted(
            entry_id
            for entry_id, e in self.entries.items()
            if e["form_id"] == form_id
            and e["state"] == "in_cart"
            and e["in_cart_at"] is not None
            and e["in_cart_at"] < cutoff
        )
        return [EntryRef(id=entry_id, form_id=form_id) for entry_id in stale[offset:offset + limit]]

    async def get_state(self, entry_id: int) -> str:
        self.state_reads.append(entry_id)
        if self.before_get_state is not None:
            self.before_get_state(self, entry_id)
        entry = self.entries.get(entry_id)
        return entry["state"] if entry else ""

    async def transition_to_expired(self, entry_id: int) -> bool:
        if self.before_transition is not None:
            self.before_transition(self, entry_id)
        entry = self.entries.get(entry_id)
        if entry is None or entry["state"] != "in_cart":
            return False
        entry["state"] = "expired"
        return True


class RecordingEvents:
    """Event logger that keeps ``(event, fields, level)`` tuples."""

    def __init__(self) -> None:
        self.records: list[tuple[str, dict, str]] = []

    def log(self, event, fields=None, level="info"):
        self.records.append((event, dict(fields or {}), level))

    def names(self) -> list[str]:
        return [event for event, _, _ in self.records]

    def find(self, event: str) -> list[dict]:
        return [fields for name, fields, _ in self.records if name == event]

    def level_of(self, event: str) -> str | None:
        for name, _, level in self.records:
            if name == event:
                return level
        return None


class FakeSettings:
    def __init__(self, form_id: int = 44) -> None:
        self.form_id = form_id

    def get_form_id(self) -> int:
        return self.form_id


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def entry_store() -> FakeEntryStore:
    return FakeEntryStore()


@pytest.fixture
def lock_store() -> MemoryLockStore:
    return MemoryLockStore(clock=lambda: NOW)


@pytest.fixture
def recorder() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def fake_settings() -> FakeSettings:
    return FakeSettings()


@pytest.fixture
def make_job(entry_store, lock_store, fake_settings, recorder):
    """Build an EntryExpiryJob; keyword overrides replace the default fakes."""

    def _make(**overrides) -> EntryExpiryJob:
        kwargs = {
            "entry_store": entry_store,
            "lock_store": lock_store,
            "settings": fake_settings,
            "event_logger": recorder,
            "clock": lambda: NOW,
        }
        kwargs.update(overrides)
        return EntryExpiryJob(**kwargs)

    return _make


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh file-backed SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'entries.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def make_entry(session_factory):
    """Insert an entry row directly; returns its id.

    ``in_cart_age`` is how many seconds ago the entry went into the cart.
    """

    async def _make(
        state: str = "created",
        form_id: int = 44,
        in_cart_age: int | None = None,
        order_id: int | None = None,
    ) -> int:
        now = datetime.now(timezone.utc)
        async with session_factory() as db:
            entry = Entry(
                form_id=form_id,
                state=state,
                order_id=order_id,
                in_cart_at=now - timedelta(seconds=in_cart_age) if in_cart_age is not None else None,
            )
            db.add(entry)
            await db.commit()
            return entry.entry_id

    return _make
