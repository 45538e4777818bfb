"""Routing of candidate operations to the store, and reinforcement.

Lock lifecycle of a fact:

    unlocked --(CORRECT, correction_count reaches LOCK_THRESHOLD)--> locked

There is no way back. Once locked, UPSERTs only nudge strength and the
value changes solely through CORRECT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from .embeddings import Embedder
from .errors import CapabilityError, StoreError
from .models import MemoryFact, OperationType, Owner, UpsertOutcome
from .schema import MemoryOperation, validate_operations
from .store import MemoryStore
from .values import embed_string_for

logger = logging.getLogger(__name__)

REPAIR_PHRASES = (
    "no that's not",
    "no, that's not",
    "that's not what i meant",
    "that’s not what i meant",
    "you misunderstood",
    "you got that wrong",
    "not like that",
    "i didn't say that",
    "i didnt say that",
)


class OperationStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    IGNORED = "ignored"
    CORRECTED = "corrected"
    LOCKED = "locked"
    DISCARDED = "discarded"
    FORGOTTEN = "forgotten"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult:
    """What happened to one operation."""

    op: OperationType
    key: str
    status: OperationStatus
    fact: MemoryFact | None = None
    error: StoreError | None = None


@dataclass
class ApplyReport:
    """Per-operation outcomes of MemoryProtocol.apply."""

    results: list[OperationResult] = field(default_factory=list)
    rejected: list[tuple[Any, str]] = field(default_factory=list)

    @property
    def errors(self) -> list[StoreError]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def ok(self) -> bool:
        return not self.errors

    def keys_with(self, *statuses: OperationStatus) -> list[str]:
        return [r.key for r in self.results if r.status in statuses]


def detect_repair_signal(text: str) -> bool:
    """True when the user is telling us we got something wrong."""
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in REPAIR_PHRASES)


def promote_to_corrections(operations: Iterable[MemoryOperation]) -> list[MemoryOperation]:
    """Turn UPSERTs into CORRECTs for a turn flagged as a repair."""
    promoted = []
    for op in operations:
        if op.op is OperationType.UPSERT:
            op = op.model_copy(update={"op": OperationType.CORRECT})
        promoted.append(op)
    return promoted


class MemoryProtocol:
    """Applies UPSERT / CORRECT / DISCARD / NO_STORE to the store."""

    def __init__(
        self,
        store: MemoryStore,
        embedder: Embedder | None = None,
        min_confidence: float = 0.0,
    ) -> None:
        """Initialize the protocol.

        Args:
            store: The MemoryStore for persistence.
            embedder: Optional embedder; vectors are stored when available.
            min_confidence: Operations below this confidence are skipped.
        """
        self.store = store
        self.embedder = embedder
        self.min_confidence = min_confidence

    async def apply(
        self, owner: Owner, operations: Iterable[MemoryOperation | dict[str, Any]]
    ) -> ApplyReport:
        """Validate and apply operations in order.

        Malformed entries are rejected whole. A StoreError on one
        operation is recorded as FAILED and the rest still run; callers
        decide what to do with ApplyReport.errors.
        """
        validated = validate_operations(operations)
        report = ApplyReport(rejected=validated.rejected)

        for op in validated.valid:
            if op.op is OperationType.NO_STORE:
                report.results.append(OperationResult(op.op, op.key, OperationStatus.SKIPPED))
                continue
            if op.confidence < self.min_confidence:
                logger.info(f"Skipping {op.op.value} {op.key}: confidence {op.confidence}")
                report.results.append(OperationResult(op.op, op.key, OperationStatus.SKIPPED))
                continue

            try:
                report.results.append(await self._apply_one(owner, op))
            except StoreError as e:
                logger.warning(f"Memory {op.op.value} failed for {op.key}: {e}")
                report.results.append(
                    OperationResult(op.op, op.key, OperationStatus.FAILED, error=e)
                )

        return report

    async def _apply_one(self, owner: Owner, op: MemoryOperation) -> OperationResult:
        if op.op is OperationType.UPSERT:
            embedding = await self._embed(op)
            upserted = self.store.upsert(owner, op.key, op.to_candidate(), embedding=embedding)
            status = {
                UpsertOutcome.CREATED: OperationStatus.CREATED,
                UpsertOutcome.UPDATED: OperationStatus.UPDATED,
                UpsertOutcome.LOCKED_IGNORE: OperationStatus.IGNORED,
            }[upserted.outcome]
            return OperationResult(op.op, op.key, status, fact=upserted.fact)

        if op.op is OperationType.CORRECT:
            embedding = await self._embed(op)
            corrected = self.store.correct(
                owner, op.key, op.value, op.to_candidate(), embedding=embedding
            )
            status = OperationStatus.LOCKED if corrected.locked else OperationStatus.CORRECTED
            return OperationResult(op.op, op.key, status, fact=corrected.fact)

        # DISCARD
        if op.fact_id:
            # Soft delete: the row stays, marked with discarded_at.
            existing = self.store.get(op.fact_id)
            if existing is None or existing.owner != owner:
                return OperationResult(op.op, op.key, OperationStatus.SKIPPED)
            discarded = self.store.discard(op.fact_id)
            return OperationResult(op.op, existing.key, OperationStatus.DISCARDED, fact=discarded)

        # Hard delete by key: explicit "forget this" request.
        deleted = self.store.forget(owner, op.key)
        status = OperationStatus.FORGOTTEN if deleted else OperationStatus.SKIPPED
        return OperationResult(op.op, op.key, status)

    async def _embed(self, op: MemoryOperation) -> list[float] | None:
        if self.embedder is None:
            return None
        try:
            return await self.embedder.embed(embed_string_for(op.key, op.value))
        except CapabilityError as e:
            logger.warning(f"Storing {op.key} without embedding: {e}")
            return None

    def reinforce(self, owner: Owner, used_keys: Iterable[str]) -> list[MemoryFact]:
        """Strengthen facts that were used in a reply.

        Unknown keys are ignored; nothing is created.
        """
        reinforced = []
        seen: set[str] = set()
        for key in used_keys:
            cleaned = (key or "").strip()
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            fact = self.store.reinforce(owner, cleaned)
            if fact is not None:
                reinforced.append(fact)
        return reinforced
