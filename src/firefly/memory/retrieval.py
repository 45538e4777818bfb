"""Selection and ranking of facts relevant to the current turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .cache import TTLCache
from .embeddings import Embedder
from .errors import CapabilityError, ValidationError
from .models import MemoryFact, Owner, RevealPolicy
from .store import MemoryStore

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)

MIN_SIMILARITY_QUERY_CHARS = 10


class RetrievalMode(str, Enum):
    LEXICAL = "lexical"
    SIMILARITY = "similarity"


@dataclass(frozen=True)
class RetrievalOptions:
    """Knobs for a retrieval call.

    Attributes:
        mode: LEXICAL ranks by pin/strength/recency; SIMILARITY uses embeddings.
        limit: Cap for lexical mode.
        similarity_threshold: Minimum cosine similarity in similarity mode.
        similarity_count: Cap for similarity mode.
        use_cache: Serve and populate the owner-scoped cache.
    """

    mode: RetrievalMode = RetrievalMode.LEXICAL
    limit: int = 50
    similarity_threshold: float = 0.75
    similarity_count: int = 30
    use_cache: bool = True

    def __post_init__(self) -> None:
        if self.limit < 1 or self.similarity_count < 1:
            raise ValidationError("Retrieval limits must be at least 1")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValidationError("similarity_threshold must be within [0, 1]")


@dataclass(frozen=True)
class RetrievalResult:
    """Facts partitioned for prompt assembly.

    core holds pinned facts, normal the unpinned facts with a normal reveal
    policy, and sensitive every user_trigger_only fact. A pinned
    user_trigger_only fact shows up in both core and sensitive; facts()
    deduplicates.
    """

    core: list[MemoryFact] = field(default_factory=list)
    normal: list[MemoryFact] = field(default_factory=list)
    sensitive: list[MemoryFact] = field(default_factory=list)
    mode_used: RetrievalMode = RetrievalMode.LEXICAL

    def facts(self) -> list[MemoryFact]:
        seen: set[str] = set()
        ordered: list[MemoryFact] = []
        for fact in [*self.core, *self.normal, *self.sensitive]:
            if fact.id not in seen:
                seen.add(fact.id)
                ordered.append(fact)
        return ordered

    def __len__(self) -> int:
        return len(self.facts())


def partition(facts: list[MemoryFact], mode: RetrievalMode) -> RetrievalResult:
    """Split ranked facts into core, normal and sensitive buckets."""
    live = [f for f in facts if not f.is_discarded]
    return RetrievalResult(
        core=[f for f in live if f.pinned],
        normal=[f for f in live if not f.pinned and f.reveal_policy is RevealPolicy.NORMAL],
        sensitive=[f for f in live if f.reveal_policy is RevealPolicy.USER_TRIGGER_ONLY],
        mode_used=mode,
    )


class Retriever:
    """Loads ranked facts for an owner, optionally through embeddings."""

    def __init__(
        self,
        store: MemoryStore,
        cache: TTLCache | None = None,
        embedder: Embedder | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.embedder = embedder
        self.event_log = event_log

    async def retrieve(
        self,
        owner: Owner,
        query_text: str,
        options: RetrievalOptions | None = None,
    ) -> RetrievalResult:
        """Return the facts worth considering for this turn.

        Similarity mode falls back to lexical ranking when no embedder is
        configured, the query is too short, or the embedder fails.

        Raises:
            StoreError: If the store cannot be read.
        """
        options = options or RetrievalOptions()
        cache_key: tuple[str, ...] = (owner.cache_key, options.mode.value)
        if options.mode is RetrievalMode.SIMILARITY:
            # similarity hits depend on the query
            cache_key += ((query_text or "").strip(),)

        if options.use_cache and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        result: RetrievalResult | None = None
        if options.mode is RetrievalMode.SIMILARITY:
            result = await self._similarity(owner, query_text, options)
        if result is None:
            result = partition(self.store.list_ranked(owner, options.limit), RetrievalMode.LEXICAL)

        if options.use_cache and self.cache is not None:
            self.cache.set(cache_key, result)

        if self.event_log is not None:
            self.event_log.log_retrieval(
                owner.user_id,
                project_id=owner.project_id,
                mode=result.mode_used.value,
                core=len(result.core),
                normal=len(result.normal),
                sensitive=len(result.sensitive),
            )
        return result

    async def _similarity(
        self, owner: Owner, query_text: str, options: RetrievalOptions
    ) -> RetrievalResult | None:
        if self.embedder is None:
            logger.info("Similarity retrieval requested without an embedder; using lexical")
            return None
        if len((query_text or "").strip()) <= MIN_SIMILARITY_QUERY_CHARS:
            return None

        try:
            vector = await self.embedder.embed(query_text)
        except CapabilityError as e:
            logger.warning(f"Embedding unavailable, falling back to lexical retrieval: {e}")
            return None

        matches = self.store.match_embeddings(
            owner,
            vector,
            threshold=options.similarity_threshold,
            count=options.similarity_count,
        )
        # Pinned facts surface whether or not they match or carry an embedding.
        ranked = self.store.list_pinned(owner)
        seen = {fact.id for fact in ranked}
        for fact, _ in matches:
            if fact.id not in seen:
                seen.add(fact.id)
                ranked.append(fact)
        return partition(ranked, RetrievalMode.SIMILARITY)
