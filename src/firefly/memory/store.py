"""SQLite storage for memory facts.

Facts are keyed by (user_id, project_id, mem_key). SQLite treats NULLs as
distinct inside a UNIQUE index, so facts in a user's global scope
(project_id NULL) do not get key uniqueness enforced; find_by_key returns
the oldest match in that case.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

import numpy as np

from .audit import AuditEvent, AuditSink, NullAuditSink
from .decay import clamp_strength, importance_to_strength
from .errors import StoreError, ValidationError
from .models import (
    CORRECTION_CREATE_STRENGTH,
    CORRECTION_FLOOR,
    LOCK_THRESHOLD,
    LOCKED_INCREMENT,
    REINFORCE_INCREMENT,
    UPDATE_INCREMENT,
    CorrectionResult,
    EmotionalWeight,
    FactCandidate,
    MemoryFact,
    Owner,
    RelationalContext,
    RevealPolicy,
    UpsertOutcome,
    UpsertResult,
)
from .retry import RetryConfig, with_retry
from .values import display_text_for, normalize_value

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCOPE = "user_id = ? AND project_id IS ?"

# Timestamps are stored as uniform UTC ISO strings, so they compare as text.
_DECAY_REFERENCE = "MAX(COALESCE(decayed_at, ''), COALESCE(last_reinforced_at, created_at))"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _pick(new: T | None, old: T) -> T:
    return old if new is None else new


class MemoryStore:
    """Persistent, conflict-aware storage for MemoryFact.

    Every public operation goes through `_run`, which applies the retry
    policy and turns sqlite3 failures into StoreError.
    """

    def __init__(
        self,
        db_path: Path,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            audit: Sink receiving one event per mutation.
            clock: Returns the current aware datetime.
            retry: Retry settings for transient failures.
        """
        self.db_path = db_path
        self.audit: AuditSink = audit or NullAuditSink()
        self.clock = clock or _utcnow
        self.retry = retry or RetryConfig()
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, timeout=5.0)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return with_retry(fn, config=self.retry, label=f"store.{operation}")
        except sqlite3.Error as e:
            raise StoreError(f"{operation} failed: {e}", operation=operation) from e

    def _query(self, operation: str, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        def _fetch() -> list[sqlite3.Row]:
            return self._get_connection().execute(sql, params).fetchall()

        return self._run(operation, _fetch)

    def _write(self, operation: str, sql: str, params: Sequence[Any] = ()) -> int:
        def _exec() -> int:
            conn = self._get_connection()
            with conn:
                return conn.execute(sql, params).rowcount

        return self._run(operation, _exec)

    def init_db(self) -> None:
        """Create the facts table if it doesn't exist."""

        def _create() -> None:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memory_items (
                    id                  TEXT PRIMARY KEY,
                    user_id             TEXT NOT NULL,
                    project_id          TEXT,
                    mem_key             TEXT NOT NULL,
                    mem_value           TEXT NOT NULL,
                    display_text        TEXT NOT NULL,
                    trigger_terms       TEXT NOT NULL DEFAULT '[]',
                    emotional_weight    TEXT NOT NULL DEFAULT 'neutral',
                    relational_context  TEXT NOT NULL DEFAULT '[]',
                    reveal_policy       TEXT NOT NULL DEFAULT 'normal',
                    strength            REAL NOT NULL DEFAULT 1.0,
                    correction_count    INTEGER NOT NULL DEFAULT 0,
                    is_locked           INTEGER NOT NULL DEFAULT 0,
                    pinned              INTEGER NOT NULL DEFAULT 0,
                    category            TEXT NOT NULL DEFAULT 'notes',
                    status              TEXT NOT NULL DEFAULT 'open',
                    discarded_at        TEXT,
                    confirmed_at        TEXT,
                    last_reinforced_at  TEXT,
                    decayed_at          TEXT,
                    created_at          TEXT NOT NULL,
                    updated_at          TEXT NOT NULL,
                    embedding           TEXT,
                    UNIQUE(user_id, project_id, mem_key)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_owner ON memory_items(user_id, project_id)"
            )
            conn.commit()

        self._run("init_db", _create)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- reads ---------------------------------------------------------

    def get(self, fact_id: str) -> MemoryFact | None:
        rows = self._query("get", "SELECT * FROM memory_items WHERE id = ?", (fact_id,))
        return self._row_to_fact(rows[0]) if rows else None

    def find_by_key(self, owner: Owner, key: str) -> MemoryFact | None:
        """Exact lookup on (user, project, key). Includes discarded facts."""
        rows = self._query(
            "find_by_key",
            f"SELECT * FROM memory_items WHERE {_SCOPE} AND mem_key = ? "
            "ORDER BY created_at ASC, rowid ASC LIMIT 1",
            (owner.user_id, owner.project_id, key.strip()),
        )
        return self._row_to_fact(rows[0]) if rows else None

    def list_items(self, owner: Owner, include_discarded: bool = False) -> list[MemoryFact]:
        """Facts for management views, pinned first then most recently updated."""
        sql = f"SELECT * FROM memory_items WHERE {_SCOPE}"
        if not include_discarded:
            sql += " AND discarded_at IS NULL"
        sql += " ORDER BY pinned DESC, updated_at DESC, rowid DESC"
        rows = self._query("list_items", sql, (owner.user_id, owner.project_id))
        return [self._row_to_fact(row) for row in rows]

    def list_ranked(self, owner: Owner, limit: int = 50) -> list[MemoryFact]:
        """Live facts ordered for retrieval: pinned, strength, recency."""
        rows = self._query(
            "list_ranked",
            f"SELECT * FROM memory_items WHERE {_SCOPE} AND discarded_at IS NULL "
            "ORDER BY pinned DESC, strength DESC, last_reinforced_at DESC, rowid DESC "
            "LIMIT ?",
            (owner.user_id, owner.project_id, limit),
        )
        return [self._row_to_fact(row) for row in rows]

    def match_embeddings(
        self,
        owner: Owner,
        vector: Sequence[float],
        threshold: float = 0.75,
        count: int = 30,
    ) -> list[tuple[MemoryFact, float]]:
        """Nearest live facts by cosine similarity, best first."""
        rows = self._query(
            "match_embeddings",
            f"SELECT * FROM memory_items WHERE {_SCOPE} AND discarded_at IS NULL "
            "AND embedding IS NOT NULL",
            (owner.user_id, owner.project_id),
        )
        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        scored: list[tuple[MemoryFact, float]] = []
        for row in rows:
            fact = self._row_to_fact(row)
            candidate = np.asarray(fact.embedding, dtype=float)
            if candidate.shape != query.shape:
                continue
            norm = np.linalg.norm(candidate)
            if norm == 0:
                continue
            similarity = float(np.dot(query, candidate) / (query_norm * norm))
            if similarity >= threshold:
                scored.append((fact, similarity))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:count]

    def list_pinned(self, owner: Owner) -> list[MemoryFact]:
        """Live pinned facts, strongest first."""
        rows = self._query(
            "list_pinned",
            f"SELECT * FROM memory_items WHERE {_SCOPE} AND discarded_at IS NULL AND pinned = 1 "
            "ORDER BY strength DESC, last_reinforced_at DESC, rowid DESC",
            (owner.user_id, owner.project_id),
        )
        return [self._row_to_fact(row) for row in rows]

    def list_for_decay(self, owner: Owner | None = None, limit: int = 500) -> list[MemoryFact]:
        """Live facts for a decay sweep; all owners when `owner` is None.

        Stalest first, by the later of decayed_at and last reinforcement, so
        repeated capped sweeps rotate through the whole table.
        """
        order = f"ORDER BY {_DECAY_REFERENCE} ASC, rowid ASC LIMIT ?"
        if owner is None:
            rows = self._query(
                "list_for_decay",
                f"SELECT * FROM memory_items WHERE discarded_at IS NULL {order}",
                (limit,),
            )
        else:
            rows = self._query(
                "list_for_decay",
                f"SELECT * FROM memory_items WHERE {_SCOPE} AND discarded_at IS NULL {order}",
                (owner.user_id, owner.project_id, limit),
            )
        return [self._row_to_fact(row) for row in rows]

    # -- writes --------------------------------------------------------

    def upsert(
        self,
        owner: Owner,
        key: str,
        candidate: FactCandidate,
        embedding: Sequence[float] | None = None,
    ) -> UpsertResult:
        """Create or merge a fact.

        Locked facts keep their value; they only get a small strength bump
        and the outcome is LOCKED_IGNORE. Upserting a discarded fact
        revives it.

        Raises:
            ValidationError: If the key is empty.
            StoreError: If persistence fails.
        """
        key = self._clean_key(key)
        value = normalize_value(candidate.value)
        now = self.clock()
        vector = tuple(float(x) for x in embedding) if embedding is not None else None
        incoming_strength = importance_to_strength(candidate.importance)

        existing = self.find_by_key(owner, key)

        if existing is None:
            fact = MemoryFact(
                id=uuid.uuid4().hex,
                owner=owner,
                key=key,
                value=value,
                display_text=candidate.display_text or display_text_for(key, value),
                trigger_terms=candidate.trigger_terms or (),
                emotional_weight=candidate.emotional_weight or EmotionalWeight.NEUTRAL,
                relational_context=candidate.relational_context or (),
                reveal_policy=candidate.reveal_policy or RevealPolicy.NORMAL,
                strength=clamp_strength(incoming_strength),
                pinned=bool(candidate.pinned),
                category=candidate.category or "notes",
                status=candidate.status or "open",
                last_reinforced_at=now,
                created_at=now,
                updated_at=now,
                embedding=vector,
            )
            self._insert(fact)
            self._audit(fact, "create", {"after": value, "strength": fact.strength})
            return UpsertResult(outcome=UpsertOutcome.CREATED, fact=fact)

        if existing.is_locked:
            fact = replace(
                existing,
                strength=clamp_strength(existing.strength + LOCKED_INCREMENT),
                last_reinforced_at=now,
            )
            self._update(fact, "upsert")
            self._audit(
                fact,
                "locked_ignore",
                {
                    "reason": "is_locked",
                    "before": existing.value,
                    "after": existing.value,
                    "attempted_value": value,
                    "strength": fact.strength,
                },
            )
            return UpsertResult(
                outcome=UpsertOutcome.LOCKED_IGNORE, fact=fact, previous_value=existing.value
            )

        fact = replace(
            existing,
            value=value,
            display_text=candidate.display_text or display_text_for(key, value),
            trigger_terms=_pick(candidate.trigger_terms, existing.trigger_terms),
            emotional_weight=_pick(candidate.emotional_weight, existing.emotional_weight),
            relational_context=_pick(candidate.relational_context, existing.relational_context),
            reveal_policy=_pick(candidate.reveal_policy, existing.reveal_policy),
            pinned=_pick(candidate.pinned, existing.pinned),
            category=_pick(candidate.category, existing.category),
            status=_pick(candidate.status, existing.status),
            strength=clamp_strength(max(existing.strength, incoming_strength) + UPDATE_INCREMENT),
            discarded_at=None,
            last_reinforced_at=now,
            updated_at=now,
            embedding=vector if vector is not None else existing.embedding,
        )
        self._update(fact, "upsert")
        self._audit(
            fact,
            "update",
            {"before": existing.value, "after": value, "strength": fact.strength},
        )
        return UpsertResult(
            outcome=UpsertOutcome.UPDATED, fact=fact, previous_value=existing.value
        )

    def correct(
        self,
        owner: Owner,
        key: str,
        new_value: Any,
        candidate: FactCandidate | None = None,
        embedding: Sequence[float] | None = None,
    ) -> CorrectionResult:
        """Force-overwrite a fact the user explicitly corrected.

        This is the only path that may change a locked fact's value and the
        only path that sets is_locked, which happens once correction_count
        reaches LOCK_THRESHOLD. Corrected facts are always pinned.
        """
        key = self._clean_key(key)
        candidate = candidate or FactCandidate(value=new_value)
        value = normalize_value(new_value)
        now = self.clock()
        vector = tuple(float(x) for x in embedding) if embedding is not None else None

        existing = self.find_by_key(owner, key)

        if existing is None:
            fact = MemoryFact(
                id=uuid.uuid4().hex,
                owner=owner,
                key=key,
                value=value,
                display_text=candidate.display_text or display_text_for(key, value),
                trigger_terms=candidate.trigger_terms or (),
                emotional_weight=candidate.emotional_weight or EmotionalWeight.NEUTRAL,
                relational_context=candidate.relational_context or (),
                reveal_policy=candidate.reveal_policy or RevealPolicy.NORMAL,
                strength=CORRECTION_CREATE_STRENGTH,
                correction_count=1,
                is_locked=1 >= LOCK_THRESHOLD,
                pinned=True,
                category=candidate.category or "notes",
                status=candidate.status or "open",
                last_reinforced_at=now,
                created_at=now,
                updated_at=now,
                embedding=vector,
            )
            self._insert(fact)
            self._audit(
                fact,
                "correct_create",
                {"after": value, "correction_count": 1, "strength": fact.strength},
            )
            return CorrectionResult(locked=fact.is_locked, fact=fact, created=True)

        count = existing.correction_count + 1
        locked = existing.is_locked or count >= LOCK_THRESHOLD

        fact = replace(
            existing,
            value=value,
            display_text=candidate.display_text or display_text_for(key, value),
            trigger_terms=_pick(candidate.trigger_terms, existing.trigger_terms),
            emotional_weight=_pick(candidate.emotional_weight, existing.emotional_weight),
            relational_context=_pick(candidate.relational_context, existing.relational_context),
            reveal_policy=_pick(candidate.reveal_policy, existing.reveal_policy),
            category=_pick(candidate.category, existing.category),
            status=_pick(candidate.status, existing.status),
            correction_count=count,
            is_locked=locked,
            pinned=True,
            strength=clamp_strength(max(existing.strength, CORRECTION_FLOOR)),
            discarded_at=None,
            last_reinforced_at=now,
            updated_at=now,
            embedding=vector if vector is not None else existing.embedding,
        )
        self._update(fact, "correct")

        event_type = "lock" if locked and not existing.is_locked else "correct"
        self._audit(
            fact,
            event_type,
            {
                "before": existing.value,
                "after": value,
                "correction_count": count,
                "strength": fact.strength,
            },
        )
        return CorrectionResult(locked=locked, fact=fact)

    def reinforce(self, owner: Owner, key: str) -> MemoryFact | None:
        """Bump a used fact's strength. Missing or discarded keys are a no-op."""
        existing = self.find_by_key(owner, key)
        if existing is None or existing.is_discarded:
            return None

        increment = LOCKED_INCREMENT if existing.is_locked else REINFORCE_INCREMENT
        now = self.clock()
        fact = replace(
            existing,
            strength=clamp_strength(existing.strength + increment),
            last_reinforced_at=now,
            updated_at=now,
        )
        self._update(fact, "reinforce")
        self._audit(
            fact,
            "reinforce",
            {"before": existing.strength, "strength": fact.strength},
        )
        return fact

    def discard(self, fact_id: str) -> MemoryFact | None:
        """Soft-delete a fact by id. Returns None if the id is unknown."""
        existing = self.get(fact_id)
        if existing is None:
            return None
        if existing.is_discarded:
            return existing

        now = self.clock()
        fact = replace(existing, discarded_at=now, updated_at=now)
        self._update(fact, "discard")
        self._audit(fact, "discard", {"before": existing.value})
        return fact

    def pin(self, fact_id: str, pinned: bool) -> MemoryFact | None:
        existing = self.get(fact_id)
        if existing is None:
            return None

        fact = replace(existing, pinned=pinned, updated_at=self.clock())
        self._update(fact, "pin")
        self._audit(fact, "pin", {"pinned": pinned})
        return fact

    def confirm(self, fact_id: str) -> MemoryFact | None:
        existing = self.get(fact_id)
        if existing is None:
            return None

        now = self.clock()
        fact = replace(existing, confirmed_at=now, updated_at=now)
        self._update(fact, "confirm")
        self._audit(fact, "confirm", {})
        return fact

    def forget(self, owner: Owner, key: str) -> int:
        """Hard-delete every fact with this key in the owner's scope.

        This is the administrative "forget this" path. Ordinary discards
        go through discard(), which only marks the row.

        Returns:
            Number of rows deleted.
        """
        key = self._clean_key(key)
        count = self._write(
            "forget",
            f"DELETE FROM memory_items WHERE {_SCOPE} AND mem_key = ?",
            (owner.user_id, owner.project_id, key),
        )
        if count:
            self._record(
                AuditEvent(
                    owner=owner,
                    key=key,
                    event_type="forget",
                    payload={"deleted": count},
                    created_at=self.clock(),
                )
            )
        return count

    def set_strength(
        self, fact_id: str, strength: float, decayed_at: datetime | None = None
    ) -> bool:
        """Persist a new strength without touching content timestamps."""
        count = self._write(
            "set_strength",
            "UPDATE memory_items SET strength = ?, decayed_at = COALESCE(?, decayed_at) "
            "WHERE id = ?",
            (clamp_strength(strength), _to_db(decayed_at), fact_id),
        )
        return count > 0

    # -- helpers -------------------------------------------------------

    @staticmethod
    def _clean_key(key: str) -> str:
        cleaned = (key or "").strip()
        if not cleaned:
            raise ValidationError("Fact key must not be empty")
        return cleaned

    def _insert(self, fact: MemoryFact) -> None:
        columns, values = self._fact_to_columns(fact)
        placeholders = ", ".join("?" for _ in columns)
        self._write(
            "insert",
            f"INSERT INTO memory_items ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    def _update(self, fact: MemoryFact, operation: str) -> None:
        columns, values = self._fact_to_columns(fact)
        assignments = ", ".join(f"{col} = ?" for col in columns if col != "id")
        params = [v for col, v in zip(columns, values) if col != "id"]
        params.append(fact.id)
        self._write(operation, f"UPDATE memory_items SET {assignments} WHERE id = ?", params)

    def _audit(self, fact: MemoryFact, event_type: str, payload: dict[str, Any]) -> None:
        self._record(
            AuditEvent(
                owner=fact.owner,
                key=fact.key,
                event_type=event_type,
                payload=payload,
                fact_id=fact.id,
                created_at=self.clock(),
            )
        )

    def _record(self, event: AuditEvent) -> None:
        try:
            self.audit.record(event)
        except Exception as e:
            logger.warning(f"Audit event '{event.event_type}' for {event.key} not recorded: {e}")

    @staticmethod
    def _fact_to_columns(fact: MemoryFact) -> tuple[list[str], list[Any]]:
        data: dict[str, Any] = {
            "id": fact.id,
            "user_id": fact.owner.user_id,
            "project_id": fact.owner.project_id,
            "mem_key": fact.key,
            "mem_value": fact.value,
            "display_text": fact.display_text,
            "trigger_terms": json.dumps(list(fact.trigger_terms), ensure_ascii=False),
            "emotional_weight": fact.emotional_weight.value,
            "relational_context": json.dumps([r.value for r in fact.relational_context]),
            "reveal_policy": fact.reveal_policy.value,
            "strength": fact.strength,
            "correction_count": fact.correction_count,
            "is_locked": int(fact.is_locked),
            "pinned": int(fact.pinned),
            "category": fact.category,
            "status": fact.status,
            "discarded_at": _to_db(fact.discarded_at),
            "confirmed_at": _to_db(fact.confirmed_at),
            "last_reinforced_at": _to_db(fact.last_reinforced_at),
            "decayed_at": _to_db(fact.decayed_at),
            "created_at": _to_db(fact.created_at),
            "updated_at": _to_db(fact.updated_at),
            "embedding": json.dumps(list(fact.embedding)) if fact.embedding is not None else None,
        }
        return list(data.keys()), list(data.values())

    def _row_to_fact(self, row: sqlite3.Row) -> MemoryFact:
        """Convert a database row to a MemoryFact."""
        embedding = row["embedding"]
        return MemoryFact(
            id=row["id"],
            owner=Owner(row["user_id"], row["project_id"]),
            key=row["mem_key"],
            value=row["mem_value"],
            display_text=row["display_text"],
            trigger_terms=tuple(json.loads(row["trigger_terms"] or "[]")),
            emotional_weight=EmotionalWeight(row["emotional_weight"]),
            relational_context=tuple(
                RelationalContext(r) for r in json.loads(row["relational_context"] or "[]")
            ),
            reveal_policy=RevealPolicy(row["reveal_policy"]),
            strength=float(row["strength"]),
            correction_count=int(row["correction_count"]),
            is_locked=bool(row["is_locked"]),
            pinned=bool(row["pinned"]),
            category=row["category"],
            status=row["status"],
            discarded_at=_from_db(row["discarded_at"]),
            confirmed_at=_from_db(row["confirmed_at"]),
            last_reinforced_at=_from_db(row["last_reinforced_at"]),
            decayed_at=_from_db(row["decayed_at"]),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            embedding=tuple(json.loads(embedding)) if embedding else None,
        )
