"""Runtime configuration.

Values come from environment variables (a .env file is loaded by main
before this runs) with defaults under ~/.firefly/.
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Mapping, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HOME = Path.home() / ".firefly"


@dataclass
class FireflyConfig:
    """Configuration for the memory engine and the chat surface.

    Attributes:
        db_path: SQLite file holding facts and audit events.
        log_dir: Directory for the JSONL event log.
        half_life_days: Days after which decay halves a fact's strength.
        decay_window_days: Facts not reinforced within this window are left
            out of prompts, unless pinned or locked.
        retrieval_limit: Maximum facts loaded per lexical retrieval.
        cache_ttl_seconds: Lifetime of retrieval and prompt cache entries.
        use_similarity: Retrieve by embedding similarity when possible.
        similarity_threshold: Minimum cosine similarity for a match.
        min_confidence: Extracted operations below this are skipped.
        decay_batch_limit: Facts processed per decay pass.
        groq_model: Chat and extraction model.
        embed_model: OpenAI embedding model.
        audit_batch: Buffered audit events before a flush.
        audit_max_age_seconds: Oldest buffered audit event before a flush.
        friend_basics: Capture named people and pets without the extractor.
        classify_turns: Classify each turn before extraction (one extra LLM call).
    """

    db_path: Path | None = None
    log_dir: Path | None = None
    half_life_days: float = 60.0
    decay_window_days: float = 90.0
    retrieval_limit: int = 50
    cache_ttl_seconds: float = 180.0
    use_similarity: bool = False
    similarity_threshold: float = 0.75
    min_confidence: float = 0.0
    decay_batch_limit: int = 500
    groq_model: str = "llama-3.3-70b-versatile"
    embed_model: str = "text-embedding-3-small"
    audit_batch: int = 20
    audit_max_age_seconds: float = 2.0
    friend_basics: bool = True
    classify_turns: bool = False

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.db_path is None:
            self.db_path = DEFAULT_HOME / "memory.db"
        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"

        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        if self.decay_window_days <= 0:
            raise ValueError("decay_window_days must be positive")
        if self.retrieval_limit < 1:
            raise ValueError("retrieval_limit must be at least 1")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.decay_batch_limit < 1:
            raise ValueError("decay_batch_limit must be at least 1")
        if self.audit_batch < 1:
            raise ValueError("audit_batch must be at least 1")
        if self.audit_max_age_seconds < 0:
            raise ValueError("audit_max_age_seconds must be >= 0")

    @property
    def decay_window(self) -> timedelta:
        return timedelta(days=self.decay_window_days)


def _env_value(env: Mapping[str, str], name: str, parse: Callable[[str], T], default: T) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return parse(raw.strip())
    except ValueError:
        logger.warning("Invalid value for %s: %r. Using default %r.", name, raw, default)
        return default


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw}")


def _parse_path(raw: str) -> Path:
    return Path(raw).expanduser()


def load_config(env: Mapping[str, str] | None = None) -> FireflyConfig:
    """Build a FireflyConfig from environment variables.

    Unparseable values fall back to defaults with a warning. Values that
    parse but make no sense (a negative half-life) raise ValueError.

    Args:
        env: Mapping to read from. Uses os.environ if None.

    Returns:
        FireflyConfig instance with loaded values.
    """
    env = os.environ if env is None else env
    defaults = FireflyConfig

    return FireflyConfig(
        db_path=_env_value(env, "FIREFLY_DB_PATH", _parse_path, None),
        log_dir=_env_value(env, "FIREFLY_LOG_DIR", _parse_path, None),
        half_life_days=_env_value(
            env, "FIREFLY_HALF_LIFE_DAYS", float, defaults.half_life_days
        ),
        decay_window_days=_env_value(
            env, "FIREFLY_DECAY_WINDOW_DAYS", float, defaults.decay_window_days
        ),
        retrieval_limit=_env_value(
            env, "FIREFLY_RETRIEVAL_LIMIT", int, defaults.retrieval_limit
        ),
        cache_ttl_seconds=_env_value(env, "FIREFLY_CACHE_TTL", float, defaults.cache_ttl_seconds),
        use_similarity=_env_value(env, "FIREFLY_SIMILARITY", _parse_bool, defaults.use_similarity),
        similarity_threshold=_env_value(
            env, "FIREFLY_SIMILARITY_THRESHOLD", float, defaults.similarity_threshold
        ),
        min_confidence=_env_value(env, "FIREFLY_MIN_CONFIDENCE", float, defaults.min_confidence),
        decay_batch_limit=_env_value(
            env, "FIREFLY_DECAY_BATCH", int, defaults.decay_batch_limit
        ),
        groq_model=env.get("GROQ_MODEL") or defaults.groq_model,
        embed_model=env.get("OPENAI_EMBED_MODEL") or defaults.embed_model,
        audit_batch=_env_value(env, "FIREFLY_AUDIT_BATCH", int, defaults.audit_batch),
        audit_max_age_seconds=_env_value(
            env, "FIREFLY_AUDIT_MAX_AGE", float, defaults.audit_max_age_seconds
        ),
        friend_basics=_env_value(
            env, "FIREFLY_FRIEND_BASICS", _parse_bool, defaults.friend_basics
        ),
        classify_turns=_env_value(
            env, "FIREFLY_CLASSIFY_TURNS", _parse_bool, defaults.classify_turns
        ),
    )
