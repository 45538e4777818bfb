"""Tests for configuration loading."""

from datetime import timedelta
from pathlib import Path

import pytest

from firefly.config import DEFAULT_HOME, FireflyConfig, load_config


class TestFireflyConfig:
    """Tests for FireflyConfig defaults and validation."""

    def test_defaults(self):
        config = FireflyConfig()
        assert config.db_path == DEFAULT_HOME / "memory.db"
        assert config.log_dir == DEFAULT_HOME / "logs"
        assert config.half_life_days == 60.0
        assert config.use_similarity is False
        assert config.decay_window == timedelta(days=90)

    def test_explicit_paths_kept(self, tmp_path: Path):
        config = FireflyConfig(db_path=tmp_path / "m.db", log_dir=tmp_path / "logs")
        assert config.db_path == tmp_path / "m.db"
        assert config.log_dir == tmp_path / "logs"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("half_life_days", 0),
            ("decay_window_days", -1),
            ("retrieval_limit", 0),
            ("cache_ttl_seconds", -5),
            ("similarity_threshold", 1.5),
            ("min_confidence", -0.1),
            ("decay_batch_limit", 0),
            ("audit_batch", 0),
        ],
    )
    def test_rejects_nonsense(self, field: str, value: float):
        with pytest.raises(ValueError):
            FireflyConfig(**{field: value})


class TestLoadConfig:
    """Tests for reading the environment."""

    def test_empty_env_gives_defaults(self):
        assert load_config({}) == FireflyConfig()

    def test_reads_values(self, tmp_path: Path):
        env = {
            "FIREFLY_DB_PATH": str(tmp_path / "memory.db"),
            "FIREFLY_HALF_LIFE_DAYS": "30",
            "FIREFLY_RETRIEVAL_LIMIT": "10",
            "FIREFLY_SIMILARITY": "yes",
            "FIREFLY_SIMILARITY_THRESHOLD": "0.8",
            "GROQ_MODEL": "llama-3.1-8b-instant",
        }
        config = load_config(env)
        assert config.db_path == tmp_path / "memory.db"
        assert config.half_life_days == 30.0
        assert config.retrieval_limit == 10
        assert config.use_similarity is True
        assert config.similarity_threshold == 0.8
        assert config.groq_model == "llama-3.1-8b-instant"

    def test_memory_mode_flags(self):
        config = load_config({"FIREFLY_FRIEND_BASICS": "off", "FIREFLY_CLASSIFY_TURNS": "1"})
        assert config.friend_basics is False
        assert config.classify_turns is True

    def test_invalid_value_falls_back(self, caplog):
        config = load_config({"FIREFLY_RETRIEVAL_LIMIT": "lots", "FIREFLY_SIMILARITY": "maybe"})
        assert config.retrieval_limit == 50
        assert config.use_similarity is False
        assert "FIREFLY_RETRIEVAL_LIMIT" in caplog.text

    def test_blank_value_ignored(self):
        assert load_config({"FIREFLY_HALF_LIFE_DAYS": "  "}).half_life_days == 60.0

    def test_nonsense_value_raises(self):
        with pytest.raises(ValueError):
            load_config({"FIREFLY_HALF_LIFE_DAYS": "-3"})
