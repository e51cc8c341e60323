"""Structured event logging for booking-flow components.

Components report named events (``expiry_job.completed``,
``entry_state.transition.success`` ...) with a mapping of fields.  Each event
becomes a regular ``logging`` record carrying ``event`` and ``fields`` as
extras, so the JSON formatter emits them as structured keys.

While debug mode is on, events are also kept in a bounded
:class:`RecentEvents` buffer that operators read through
``GET /api/debug/logs``.

Logging is fire-and-forget: nothing raised while formatting or emitting an
event reaches the caller.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class RecentEvents:
    """Bounded in-memory buffer of the most recent events (newest last)."""

    def __init__(self, limit: int = 50) -> None:
        self._rows: deque[dict[str, str]] = deque(maxlen=max(1, limit))

    @property
    def limit(self) -> int:
        return self._rows.maxlen or 0

    def append(self, row: dict[str, str]) -> None:
        self._rows.append(row)

    def rows(self) -> list[dict[str, str]]:
        return list(self._rows)

    def clear(self) -> None:
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)


class EventLogger:
    """Emit named events with structured fields.

    Usage::

        events = EventLogger("tcbf.expiry")
        events.log("expiry_job.completed", {"expired_count": 3})
    """

    def __init__(
        self,
        name: str = "tcbf.events",
        buffer: RecentEvents | None = None,
        debug_enabled: Callable[[], bool] | None = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        self._buffer = buffer
        self._debug_enabled = debug_enabled or (lambda: False)

    @property
    def buffer(self) -> RecentEvents | None:
        return self._buffer

    def log(self, event: str, fields: Mapping[str, Any] | None = None, level: str = "info") -> None:
        with suppress(Exception):
            data = dict(fields or {})
            encoded = json.dumps(data, default=str, separators=(",", ":"))
            self._logger.log(
                _LEVELS.get(level, logging.INFO),
                "%s %s",
                event,
                encoded,
                extra={"event": event, "fields": data},
            )
            if self._buffer is not None and self._debug_enabled():
                self._buffer.append({
                    "time": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                    "context": event,
                    "data": encoded,
                })


def build_event_logger(name: str) -> EventLogger:
    """Event logger wired to the process-wide settings and debug buffer."""
    from tcbf.config import settings

    return EventLogger(name, buffer=recent_events, debug_enabled=lambda: settings.DEBUG)


def _default_limit() -> int:
    from tcbf.config import settings

    return settings.DEBUG_LOG_LIMIT


# ── Singleton ────────────────────────────────────────────────────
#
# Shared by every event logger built through build_event_logger() so the
# debug endpoint sees events from all components.

recent_events = RecentEvents(limit=_default_limit())
