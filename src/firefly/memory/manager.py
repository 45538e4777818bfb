"""Memory manager for orchestrating retrieval, prompting and updates per turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from ..config import FireflyConfig
from .basics import friend_basics_ops, merge_operations
from .cache import TTLCache
from .classify import filter_for_mode, should_extract
from .models import MemoryFact, OperationType, Owner
from .prompt import AssembledContext, assemble, render_memory_block
from .protocol import (
    ApplyReport,
    MemoryProtocol,
    OperationResult,
    detect_repair_signal,
    promote_to_corrections,
)
from .retrieval import RetrievalMode, RetrievalOptions, RetrievalResult, Retriever
from .schema import parse_operation
from .store import MemoryStore

if TYPE_CHECKING:
    from ..logging import JSONLLogger
    from .classify import TurnClassifier
    from .extractor import OperationExtractor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TurnContext:
    """Memory prepared for one chat turn."""

    context: AssembledContext
    memory_block: str
    retrieval: RetrievalResult = field(default_factory=RetrievalResult)

    @property
    def used_keys(self) -> list[str]:
        return list(self.context.fact_keys)

    @property
    def has_memory(self) -> bool:
        return bool(self.memory_block)


class MemoryManager:
    """Orchestrates memory for the chat loop and the management surface.

    This is the main interface for the memory system, coordinating
    between the store, the retriever, the protocol and the extractor.
    """

    def __init__(
        self,
        store: MemoryStore,
        retriever: Retriever,
        protocol: MemoryProtocol,
        extractor: OperationExtractor | None = None,
        config: FireflyConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        event_log: JSONLLogger | None = None,
        classifier: TurnClassifier | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The MemoryStore for persistence.
            retriever: Loads candidate facts per turn.
            protocol: Applies operations and reinforcement.
            extractor: Optional OperationExtractor for automatic extraction.
            config: Runtime settings; defaults if None.
            clock: Returns the current aware datetime.
            event_log: Optional structured event log.
            classifier: Optional TurnClassifier gating extraction per turn.
        """
        self.store = store
        self.retriever = retriever
        self.protocol = protocol
        self.extractor = extractor
        self.classifier = classifier
        self.config = config or FireflyConfig()
        self.clock = clock or _utcnow
        self.event_log = event_log
        self.prompt_cache = TTLCache(self.config.cache_ttl_seconds)

    def _retrieval_options(self) -> RetrievalOptions:
        mode = RetrievalMode.SIMILARITY if self.config.use_similarity else RetrievalMode.LEXICAL
        return RetrievalOptions(
            mode=mode,
            limit=self.config.retrieval_limit,
            similarity_threshold=self.config.similarity_threshold,
        )

    async def context_for_turn(self, owner: Owner, text: str) -> TurnContext:
        """Retrieve, gate and render memory for the user's message.

        Assembled blocks are cached per (owner, text) for the cache TTL.

        Raises:
            StoreError: If the store cannot be read.
        """
        cache_key = (owner.cache_key, text)
        cached = self.prompt_cache.get(cache_key)
        if cached is not None:
            return cached

        retrieval = await self.retriever.retrieve(owner, text, self._retrieval_options())
        context = assemble(retrieval.facts(), text, self.config.decay_window, self.clock())
        turn = TurnContext(
            context=context,
            memory_block=render_memory_block(context),
            retrieval=retrieval,
        )
        self.prompt_cache.set(cache_key, turn)
        return turn

    async def record_turn(
        self, owner: Owner, user_text: str, assistant_text: str | None = None
    ) -> ApplyReport:
        """Extract operations from a finished turn and apply them.

        Named people and pets are captured without the extractor. With a
        classifier, listening turns write nothing and respectful turns keep
        only confident operations.

        Returns:
            The apply report; empty when nothing was extracted.
        """
        turn = None
        if self.classifier is not None:
            turn = await self.classifier.classify(user_text)
            if not should_extract(turn, user_text):
                logger.debug(f"Skipping extraction in {turn.memory_mode.value} mode")
                return ApplyReport()

        operations = friend_basics_ops(user_text) if self.config.friend_basics else []
        if self.extractor is not None:
            extracted = await self.extractor.extract(user_text, assistant_text)
            operations = merge_operations(operations, extracted)
        if turn is not None:
            operations = filter_for_mode(operations, turn)
        if detect_repair_signal(user_text):
            operations = promote_to_corrections(operations)
        if not operations:
            return ApplyReport()

        report = await self.protocol.apply(owner, operations)
        self._log_results(owner, report.results)
        return report

    def reinforce(self, owner: Owner, used_keys: list[str]) -> list[MemoryFact]:
        return self.protocol.reinforce(owner, used_keys)

    async def correct(
        self, owner: Owner, key: str, value: Any, **metadata: Any
    ) -> OperationResult:
        """Apply an explicit user correction.

        Raises:
            ValidationError: If the key or value is malformed.
        """
        op = parse_operation(
            {
                "op": OperationType.CORRECT.value,
                "key": key,
                "value": value,
                "confidence": 1.0,
                **metadata,
            }
        )
        report = await self.protocol.apply(owner, [op])
        self._log_results(owner, report.results)
        result = report.results[0]
        if result.error is not None:
            raise result.error
        return result

    # -- management ----------------------------------------------------

    def list_items(self, owner: Owner, include_discarded: bool = False) -> list[MemoryFact]:
        return self.store.list_items(owner, include_discarded=include_discarded)

    def _owned(self, owner: Owner, fact_id: str) -> MemoryFact | None:
        fact = self.store.get(fact_id)
        if fact is None or fact.owner != owner:
            return None
        return fact

    def pin(self, owner: Owner, fact_id: str, pinned: bool = True) -> MemoryFact | None:
        if self._owned(owner, fact_id) is None:
            return None
        return self.store.pin(fact_id, pinned)

    def discard(self, owner: Owner, fact_id: str) -> MemoryFact | None:
        """Soft-delete a fact; it stops appearing in prompts."""
        if self._owned(owner, fact_id) is None:
            return None
        return self.store.discard(fact_id)

    def confirm(self, owner: Owner, fact_id: str) -> MemoryFact | None:
        if self._owned(owner, fact_id) is None:
            return None
        return self.store.confirm(fact_id)

    def forget(self, owner: Owner, key: str) -> int:
        """Hard-delete every fact under `key`. Returns the number removed."""
        return self.store.forget(owner, key)

    def export_markdown(self, owner: Owner, include_discarded: bool = False) -> str:
        """Render the owner's facts as a markdown document."""
        items = self.list_items(owner, include_discarded=include_discarded)
        header = f"# Firefly Memory Export\nGenerated: {self.clock().isoformat()}\n\n"
        lines = []
        for fact in items:
            flags = [
                name
                for name, on in (
                    ("pinned", fact.pinned),
                    ("locked", fact.is_locked),
                    ("discarded", fact.is_discarded),
                )
                if on
            ]
            suffix = f" [{', '.join(flags)}]" if flags else ""
            lines.append(f"- ({fact.category}/{fact.status}) {fact.display_text}{suffix}")
        return header + "\n".join(lines)

    def _log_results(self, owner: Owner, results: list[OperationResult]) -> None:
        if self.event_log is None:
            return
        for result in results:
            self.event_log.log_memory_op(
                owner.user_id,
                result.op.value,
                result.key,
                result.status.value,
                project_id=owner.project_id,
                error=str(result.error) if result.error else None,
            )
