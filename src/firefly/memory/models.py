"""Data models for the memory engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

LOCK_THRESHOLD = 2
MIN_STRENGTH = 0.1
MAX_STRENGTH = 3.0

UPDATE_INCREMENT = 0.2
REINFORCE_INCREMENT = 0.15
LOCKED_INCREMENT = 0.05
CORRECTION_FLOOR = 2.5
CORRECTION_CREATE_STRENGTH = 3.0

DEFAULT_CATEGORY = "notes"
DEFAULT_STATUS = "open"


class RevealPolicy(str, Enum):
    """Whether a fact may be surfaced without the user mentioning it."""

    NORMAL = "normal"
    USER_TRIGGER_ONLY = "user_trigger_only"
    NEVER = "never"


class EmotionalWeight(str, Enum):
    """How heavy a fact is to bring up."""

    LIGHT = "light"
    NEUTRAL = "neutral"
    HEAVY = "heavy"


class RelationalContext(str, Enum):
    """Fixed vocabulary of relationship tags."""

    SELF = "self"
    CHILD = "child"
    PARTNER = "partner"
    PARENT = "parent"
    WORK = "work"
    HEALTH = "health"
    LEGAL = "legal"
    HOME = "home"
    IDENTITY = "identity"
    PET = "pet"


class OperationType(str, Enum):
    """Operations the extraction step can ask for."""

    UPSERT = "UPSERT"
    CORRECT = "CORRECT"
    DISCARD = "DISCARD"
    NO_STORE = "NO_STORE"


class UpsertOutcome(str, Enum):
    """What an upsert actually did."""

    CREATED = "created"
    UPDATED = "updated"
    LOCKED_IGNORE = "locked_ignore"


@dataclass(frozen=True)
class Owner:
    """Scope a fact is stored under.

    Attributes:
        user_id: The owning user.
        project_id: The project, or None for the user's global scope.
    """

    user_id: str
    project_id: str | None = None

    @property
    def is_global(self) -> bool:
        return self.project_id is None

    @property
    def cache_key(self) -> str:
        return f"{self.user_id}:{self.project_id or 'none'}"


@dataclass(frozen=True)
class MemoryFact:
    """A single persisted fact about the user.

    Attributes:
        id: Opaque identifier assigned at creation.
        owner: Scope the fact belongs to.
        key: Namespaced key (e.g. 'people.Jane', 'preferences.color').
        value: Normalized text payload, often JSON.
        display_text: Human readable rendering of key and value.
        trigger_terms: Words that unlock a user_trigger_only fact.
        emotional_weight: light, neutral or heavy.
        relational_context: Tags from the RelationalContext vocabulary.
        reveal_policy: Visibility rule for retrieval.
        strength: Salience score in [MIN_STRENGTH, MAX_STRENGTH].
        correction_count: Times the user explicitly corrected this fact.
        is_locked: Once True only corrections may change the value.
        pinned: Pinned facts are always surfaced first.
        category: Prompt grouping (people, issues, constraints, hypotheses, notes).
        status: Qualifier shown in front of hypotheses.
        discarded_at: Soft-delete marker.
        confirmed_at: When the user confirmed the fact.
        last_reinforced_at: Last time the fact was written or used.
        decayed_at: Last time the decay job touched the strength.
        created_at: Creation time.
        updated_at: Last content or metadata change.
        embedding: Vector used by similarity retrieval.
    """

    id: str
    owner: Owner
    key: str
    value: str
    display_text: str
    trigger_terms: tuple[str, ...] = ()
    emotional_weight: EmotionalWeight = EmotionalWeight.NEUTRAL
    relational_context: tuple[RelationalContext, ...] = ()
    reveal_policy: RevealPolicy = RevealPolicy.NORMAL
    strength: float = 1.0
    correction_count: int = 0
    is_locked: bool = False
    pinned: bool = False
    category: str = DEFAULT_CATEGORY
    status: str = DEFAULT_STATUS
    discarded_at: datetime | None = None
    confirmed_at: datetime | None = None
    last_reinforced_at: datetime | None = None
    decayed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    embedding: tuple[float, ...] | None = field(default=None, repr=False, compare=False)

    @property
    def is_discarded(self) -> bool:
        return self.discarded_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Shape the fact for management listings (no embedding)."""

        def _ts(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "user_id": self.owner.user_id,
            "project_id": self.owner.project_id,
            "key": self.key,
            "value": self.value,
            "display_text": self.display_text,
            "trigger_terms": list(self.trigger_terms),
            "emotional_weight": self.emotional_weight.value,
            "relational_context": [r.value for r in self.relational_context],
            "reveal_policy": self.reveal_policy.value,
            "strength": self.strength,
            "correction_count": self.correction_count,
            "is_locked": self.is_locked,
            "pinned": self.pinned,
            "category": self.category,
            "status": self.status,
            "discarded_at": _ts(self.discarded_at),
            "confirmed_at": _ts(self.confirmed_at),
            "last_reinforced_at": _ts(self.last_reinforced_at),
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }


@dataclass(frozen=True)
class FactCandidate:
    """Incoming data for an upsert or correction.

    Only `value` is required. Any other field left as None keeps the
    existing fact's value on update, or the model default on create.
    """

    value: Any
    display_text: str | None = None
    trigger_terms: tuple[str, ...] | None = None
    emotional_weight: EmotionalWeight | None = None
    relational_context: tuple[RelationalContext, ...] | None = None
    reveal_policy: RevealPolicy | None = None
    importance: int | None = None
    pinned: bool | None = None
    category: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class UpsertResult:
    """Result of MemoryStore.upsert."""

    outcome: UpsertOutcome
    fact: MemoryFact
    previous_value: str | None = None

    @property
    def ignored(self) -> bool:
        return self.outcome is UpsertOutcome.LOCKED_IGNORE


@dataclass(frozen=True)
class CorrectionResult:
    """Result of MemoryStore.correct."""

    locked: bool
    fact: MemoryFact
    created: bool = False
