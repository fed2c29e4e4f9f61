"""
Session registry: open sessions by id, plus a bounded closed-session history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from hinan.coordinator.engine import ProtocolEngine


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionRecord:
    """Registry entry for one Agent connection."""

    session_id: str
    engine: ProtocolEngine | None
    opened_at: str = field(default_factory=_now)
    closed_at: str | None = None
    final: dict[str, Any] | None = None

    def summary(self) -> dict[str, Any]:
        """Compact listing representation."""
        if self.final is not None:
            snapshot = self.final
        elif self.engine is not None:
            snapshot = self.engine.snapshot()
        else:
            snapshot = {}
        return {
            "session_id": self.session_id,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            **snapshot,
        }


class SessionRegistry:
    """
    Maps connection ids to their protocol engines.

    Each engine owns its own SessionState; the registry only hands out ids and
    keeps summaries, so no session ever reads another's state.
    """

    def __init__(self, max_closed: int = 100):
        self.max_closed = max_closed
        self._open: dict[str, SessionRecord] = {}
        self._closed: dict[str, SessionRecord] = {}
        self._closed_order: list[str] = []
        self._lock = Lock()

    @staticmethod
    def new_session_id() -> str:
        return uuid4().hex

    def register(self, session_id: str, engine: ProtocolEngine) -> None:
        """
        Track an engine under its session id.

        Raises
        ------
        ValueError
            If the id is already open
        """
        with self._lock:
            if session_id in self._open:
                raise ValueError(f"Session '{session_id}' already registered")
            self._open[session_id] = SessionRecord(session_id=session_id, engine=engine)

    def get_engine(self, session_id: str) -> ProtocolEngine | None:
        with self._lock:
            record = self._open.get(session_id)
            return record.engine if record else None

    def release(self, session_id: str) -> bool:
        """
        Move a session to the closed history, freezing its summary.

        Returns False if the session was not open.
        """
        with self._lock:
            record = self._open.pop(session_id, None)
            if record is None:
                return False

            if record.engine is not None:
                record.final = record.engine.snapshot()
            record.engine = None
            record.closed_at = _now()

            self._closed[session_id] = record
            self._closed_order.append(session_id)
            self._trim_closed()
            return True

    def get_summary(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._open.get(session_id) or self._closed.get(session_id)
            if record is None:
                return None
            return record.summary()

    def list_sessions(self, limit: int = 20) -> list[dict[str, Any]]:
        """List summaries, open sessions first, then newest closed ones."""
        with self._lock:
            records = list(reversed(list(self._open.values())))
            records += [self._closed[sid] for sid in reversed(self._closed_order)]
            return [record.summary() for record in records[: max(limit, 0)]]

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._open)

    @property
    def closed_count(self) -> int:
        with self._lock:
            return len(self._closed)

    def _trim_closed(self) -> None:
        """Drop oldest closed sessions when exceeding retention."""
        while len(self._closed_order) > self.max_closed:
            oldest = self._closed_order.pop(0)
            self._closed.pop(oldest, None)
