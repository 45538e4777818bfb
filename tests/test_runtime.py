"""Tests for runtime wiring."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from firefly.config import FireflyConfig
from firefly.memory.audit import SQLiteAuditSink
from firefly.memory.classify import TurnClassifier
from firefly.memory.decay import HalfLifeDecay, IncrementalDecay
from firefly.memory.embeddings import OpenAIEmbedder
from firefly.memory.extractor import OperationExtractor
from firefly.memory.models import FactCandidate, Owner
from firefly.runtime import build_runtime


@pytest.fixture
def config(tmp_path: Path) -> FireflyConfig:
    return FireflyConfig(db_path=tmp_path / "memory.db", log_dir=tmp_path / "logs")


class TestBuildRuntime:
    """Tests for build_runtime."""

    def test_minimal(self, config: FireflyConfig, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        runtime = build_runtime(config)
        try:
            assert runtime.manager.extractor is None
            assert runtime.manager.retriever.embedder is None
            assert config.db_path.exists()
        finally:
            runtime.close()

    def test_groq_client_enables_extraction(self, config: FireflyConfig):
        runtime = build_runtime(config, groq_client=AsyncMock())
        try:
            assert isinstance(runtime.manager.extractor, OperationExtractor)
            assert runtime.manager.extractor.model == config.groq_model
        finally:
            runtime.close()

    def test_classify_turns_enables_classifier(self, tmp_path: Path):
        config = FireflyConfig(db_path=tmp_path / "memory.db", classify_turns=True)
        runtime = build_runtime(config, groq_client=AsyncMock())
        try:
            assert isinstance(runtime.manager.classifier, TurnClassifier)
        finally:
            runtime.close()

    def test_classifier_off_by_default(self, config: FireflyConfig):
        runtime = build_runtime(config, groq_client=AsyncMock())
        try:
            assert runtime.manager.classifier is None
        finally:
            runtime.close()

    def test_similarity_with_openai_client(self, tmp_path: Path):
        config = FireflyConfig(db_path=tmp_path / "memory.db", use_similarity=True)
        runtime = build_runtime(config, openai_client=Mock())
        try:
            assert isinstance(runtime.manager.retriever.embedder, OpenAIEmbedder)
            assert runtime.manager.protocol.embedder is runtime.manager.retriever.embedder
        finally:
            runtime.close()

    def test_similarity_without_key_falls_back(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = FireflyConfig(db_path=tmp_path / "memory.db", use_similarity=True)
        runtime = build_runtime(config)
        try:
            assert runtime.manager.retriever.embedder is None
        finally:
            runtime.close()


class TestMemoryRuntime:
    """Tests for MemoryRuntime helpers."""

    def test_decay_job_defaults(self, config: FireflyConfig):
        runtime = build_runtime(config)
        try:
            job = runtime.decay_job()
            assert job.policy == HalfLifeDecay(config.half_life_days)
            assert job.batch_limit == config.decay_batch_limit
            custom = runtime.decay_job(policy=IncrementalDecay(), batch_limit=5)
            assert custom.policy == IncrementalDecay()
            assert custom.batch_limit == 5
        finally:
            runtime.close()

    def test_close_flushes_audit(self, config: FireflyConfig):
        owner = Owner("alice")
        runtime = build_runtime(config)
        runtime.store.upsert(owner, "pet.name", FactCandidate(value="Ember"))
        runtime.close()

        events = SQLiteAuditSink(config.db_path)
        try:
            assert [e.event_type for e in events.list_events(owner)] == ["create"]
        finally:
            events.close()
