"""Append-only audit trail of operations applied to facts.

The store reports every mutation to an AuditSink. Sinks are best-effort:
the store logs and swallows their failures so a broken audit trail never
blocks a fact write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from .models import Owner

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditEvent:
    """One change applied to a fact."""

    owner: Owner
    key: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    fact_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


class AuditSink(Protocol):
    """Destination for audit events."""

    def record(self, event: AuditEvent) -> None:
        ...

    def flush(self) -> None:
        ...


class NullAuditSink:
    """Drops every event."""

    def record(self, event: AuditEvent) -> None:
        pass

    def flush(self) -> None:
        pass


class SQLiteAuditSink:
    """Writes events to an append-only `memory_events` table."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, timeout=5.0)
            self._conn.row_factory = sqlite3.Row
            self._init_table(self._conn)
        return self._conn

    @staticmethod
    def _init_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS memory_events (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id     TEXT NOT NULL,
                project_id  TEXT,
                fact_id     TEXT,
                mem_key     TEXT NOT NULL,
                event_type  TEXT NOT NULL,
                payload     TEXT NOT NULL DEFAULT '{}',
                created_at  TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_owner "
            "ON memory_events(user_id, project_id, mem_key)"
        )
        conn.commit()

    def record(self, event: AuditEvent) -> None:
        self.write_many([event])

    def write_many(self, events: list[AuditEvent]) -> None:
        """Insert a batch of events in one transaction."""
        if not events:
            return
        conn = self._get_connection()
        with conn:
            conn.executemany(
                """
                INSERT INTO memory_events
                    (user_id, project_id, fact_id, mem_key, event_type, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.owner.user_id,
                        e.owner.project_id,
                        e.fact_id,
                        e.key,
                        e.event_type,
                        json.dumps(e.payload, default=str, ensure_ascii=False),
                        e.created_at.isoformat(),
                    )
                    for e in events
                ],
            )

    def flush(self) -> None:
        pass

    def list_events(
        self, owner: Owner, key: str | None = None, limit: int = 100
    ) -> list[AuditEvent]:
        """Return events for an owner, newest first."""
        conn = self._get_connection()
        sql = (
            "SELECT * FROM memory_events WHERE user_id = ? AND project_id IS ?"
        )
        params: list[Any] = [owner.user_id, owner.project_id]
        if key is not None:
            sql += " AND mem_key = ?"
            params.append(key)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = conn.execute(sql, params).fetchall()
        return [
            AuditEvent(
                owner=Owner(row["user_id"], row["project_id"]),
                key=row["mem_key"],
                event_type=row["event_type"],
                payload=json.loads(row["payload"]),
                fact_id=row["fact_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


@dataclass(frozen=True)
class FlushPolicy:
    """When a BufferedAuditSink writes its buffer out.

    Attributes:
        max_batch: Flush once this many events are buffered.
        max_age_seconds: Flush once the oldest buffered event is this old.
    """

    max_batch: int = 20
    max_age_seconds: float = 2.0

    def __post_init__(self) -> None:
        if self.max_batch < 1:
            raise ValueError("max_batch must be at least 1")
        if self.max_age_seconds < 0:
            raise ValueError("max_age_seconds must be >= 0")


class BufferedAuditSink:
    """Batches events in memory and forwards them to a SQLiteAuditSink.

    There is no timer: the age check runs on every record() call, and
    callers flush() explicitly at shutdown.
    """

    def __init__(
        self,
        inner: SQLiteAuditSink,
        policy: FlushPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.inner = inner
        self.policy = policy or FlushPolicy()
        self._clock = clock
        self._buffer: list[AuditEvent] = []
        self._oldest: datetime | None = None

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def record(self, event: AuditEvent) -> None:
        if not self._buffer:
            self._oldest = self._clock()
        self._buffer.append(event)

        if self._should_flush():
            self.flush()

    def _should_flush(self) -> bool:
        if len(self._buffer) >= self.policy.max_batch:
            return True
        if self._oldest is None:
            return False
        age = (self._clock() - self._oldest).total_seconds()
        return age >= self.policy.max_age_seconds

    def flush(self) -> None:
        """Write buffered events. Failures are logged and the batch dropped."""
        if not self._buffer:
            return
        batch, self._buffer = self._buffer, []
        self._oldest = None
        try:
            self.inner.write_many(batch)
        except Exception as e:
            logger.warning(f"Failed to flush {len(batch)} audit event(s): {e}")
