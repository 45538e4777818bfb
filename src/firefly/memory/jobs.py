"""Periodic decay sweep over stored facts."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from .decay import DecayPolicy, HalfLifeDecay
from .errors import StoreError
from .models import MemoryFact, Owner
from .store import MemoryStore

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)

# Changes smaller than this are not written back.
STRENGTH_EPSILON = 1e-6


@dataclass
class DecayReport:
    """Counts from one decay pass."""

    processed: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decay_reference(fact: MemoryFact) -> datetime | None:
    """Start of the elapsed window: the later of last reinforcement and last decay."""
    candidates = [t for t in (fact.last_reinforced_at, fact.decayed_at) if t is not None]
    if not candidates:
        return fact.created_at
    return max(candidates)


class DecayJob:
    """Applies a decay policy to a bounded batch of facts.

    The pass is best-effort: a row that fails to update is counted and
    logged, and the rest of the batch still runs. Because elapsed time is
    measured from decayed_at once a fact has been decayed, running the job
    twice at the same instant changes nothing the second time.
    """

    def __init__(
        self,
        store: MemoryStore,
        policy: DecayPolicy | None = None,
        batch_limit: int = 500,
        clock: Callable[[], datetime] | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        if batch_limit < 1:
            raise ValueError("batch_limit must be at least 1")
        self.store = store
        self.policy = policy or HalfLifeDecay()
        self.batch_limit = batch_limit
        self.clock = clock or _utcnow
        self.event_log = event_log

    def run(self, scope: Owner | None = None) -> DecayReport:
        """Decay up to batch_limit live facts, in one owner scope or across all.

        Raises:
            StoreError: If the batch itself cannot be loaded.
        """
        started = time.perf_counter()
        now = self.clock()
        report = DecayReport()

        facts = self.store.list_for_decay(scope, limit=self.batch_limit)
        for fact in facts:
            report.processed += 1
            reference = decay_reference(fact)
            if reference is None:
                continue

            new_strength = self.policy.apply(fact.strength, reference, now)
            if abs(new_strength - fact.strength) < STRENGTH_EPSILON:
                continue

            try:
                if self.store.set_strength(fact.id, new_strength, decayed_at=now):
                    report.updated += 1
            except StoreError as e:
                report.failed += 1
                report.errors.append(f"{fact.id}: {e}")
                logger.warning(f"Decay failed for {fact.id} ({fact.key}): {e}")

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Decay pass ({self.policy.name}): processed={report.processed} "
            f"updated={report.updated} failed={report.failed}"
        )
        if self.event_log is not None:
            self.event_log.log_decay_cycle(
                report.processed,
                report.updated,
                report.failed,
                duration_ms=duration_ms,
                user_id=scope.user_id if scope else None,
                project_id=scope.project_id if scope else None,
            )
        return report
