"""Wiring of the memory engine from a FireflyConfig."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from groq import AsyncGroq
from openai import AsyncOpenAI

from .config import FireflyConfig
from .logging import JSONLLogger
from .memory.audit import BufferedAuditSink, FlushPolicy, SQLiteAuditSink
from .memory.cache import TTLCache
from .memory.classify import TurnClassifier
from .memory.decay import DecayPolicy, HalfLifeDecay
from .memory.embeddings import OpenAIEmbedder
from .memory.extractor import OperationExtractor
from .memory.jobs import DecayJob
from .memory.manager import MemoryManager
from .memory.protocol import MemoryProtocol
from .memory.retrieval import Retriever
from .memory.store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class MemoryRuntime:
    """Everything the chat loop and the management CLI need."""

    config: FireflyConfig
    store: MemoryStore
    events: SQLiteAuditSink
    audit: BufferedAuditSink
    manager: MemoryManager
    event_log: JSONLLogger | None = None

    def decay_job(
        self, policy: DecayPolicy | None = None, batch_limit: int | None = None
    ) -> DecayJob:
        return DecayJob(
            self.store,
            policy=policy or HalfLifeDecay(self.config.half_life_days),
            batch_limit=batch_limit or self.config.decay_batch_limit,
            event_log=self.event_log,
        )

    def close(self) -> None:
        """Flush buffered audit events and close connections."""
        self.audit.flush()
        self.events.close()
        self.store.close()


def build_runtime(
    config: FireflyConfig,
    groq_client: AsyncGroq | None = None,
    openai_client: AsyncOpenAI | None = None,
    event_log: JSONLLogger | None = None,
) -> MemoryRuntime:
    """Create the store, audit sink and manager for `config`.

    Extraction is enabled when a Groq client is given, and turn
    classification too when classify_turns is set. Embeddings are
    enabled when similarity retrieval is configured and an OpenAI client is
    given or OPENAI_API_KEY is set.
    """
    assert config.db_path is not None

    events = SQLiteAuditSink(config.db_path)
    audit = BufferedAuditSink(
        events,
        FlushPolicy(max_batch=config.audit_batch, max_age_seconds=config.audit_max_age_seconds),
    )
    store = MemoryStore(config.db_path, audit=audit)
    store.init_db()

    embedder = None
    if config.use_similarity:
        if openai_client is None and os.getenv("OPENAI_API_KEY"):
            openai_client = AsyncOpenAI()
        if openai_client is not None:
            embedder = OpenAIEmbedder(openai_client, model=config.embed_model)
        else:
            logger.info("Similarity retrieval configured without OPENAI_API_KEY; using lexical")

    extractor = None
    if groq_client is not None:
        extractor = OperationExtractor(groq_client, model=config.groq_model)

    classifier = None
    if groq_client is not None and config.classify_turns:
        classifier = TurnClassifier(groq_client, model=config.groq_model)

    retriever = Retriever(
        store,
        cache=TTLCache(config.cache_ttl_seconds),
        embedder=embedder,
        event_log=event_log,
    )
    protocol = MemoryProtocol(store, embedder=embedder, min_confidence=config.min_confidence)
    manager = MemoryManager(
        store,
        retriever,
        protocol,
        extractor=extractor,
        config=config,
        event_log=event_log,
        classifier=classifier,
    )
    return MemoryRuntime(
        config=config,
        store=store,
        events=events,
        audit=audit,
        manager=manager,
        event_log=event_log,
    )
