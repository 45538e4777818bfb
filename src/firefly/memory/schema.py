"""The one canonical shape of a memory operation.

Extraction output, the correction endpoint and the CLI all build
MemoryOperation through this module, so an operation is validated once at
the boundary and never partially applied.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    EmotionalWeight,
    FactCandidate,
    OperationType,
    RelationalContext,
    RevealPolicy,
)

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 3
MAX_OPS_PER_EXTRACTION = 20


class MemoryOperation(BaseModel):
    """A single candidate operation on the fact store."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    op: OperationType
    key: str = ""
    value: Any = None
    display_text: str | None = None
    trigger_terms: list[str] = Field(default_factory=list)
    emotional_weight: EmotionalWeight = EmotionalWeight.NEUTRAL
    relational_context: list[RelationalContext] = Field(default_factory=list)
    reveal_policy: RevealPolicy = RevealPolicy.NORMAL
    confidence: float = Field(default=0.75, ge=0.0, le=1.0)
    importance: int | None = Field(default=None, ge=1, le=10)
    category: str | None = None
    status: str | None = None
    pinned: bool | None = None
    fact_id: str | None = None

    @field_validator("op", mode="before")
    @classmethod
    def _upper_op(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("key", mode="before")
    @classmethod
    def _strip_key(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("trigger_terms")
    @classmethod
    def _clean_terms(cls, v: list[str]) -> list[str]:
        return [t.strip() for t in v if t and t.strip()]

    @model_validator(mode="after")
    def _check_payload(self) -> "MemoryOperation":
        if self.op is OperationType.NO_STORE:
            return self
        if self.op is OperationType.DISCARD and self.fact_id:
            return self
        if len(self.key) < MIN_KEY_LENGTH:
            raise ValueError(f"key must be at least {MIN_KEY_LENGTH} characters")
        if self.op in (OperationType.UPSERT, OperationType.CORRECT):
            if self.value is None or self.value == "":
                raise ValueError(f"{self.op.value} requires a value")
        return self

    def to_candidate(self) -> FactCandidate:
        """Metadata carried into the store; unset optionals stay None."""
        fields = self.model_fields_set
        return FactCandidate(
            value=self.value,
            display_text=self.display_text,
            trigger_terms=tuple(self.trigger_terms) if "trigger_terms" in fields else None,
            emotional_weight=self.emotional_weight if "emotional_weight" in fields else None,
            relational_context=(
                tuple(self.relational_context) if "relational_context" in fields else None
            ),
            reveal_policy=self.reveal_policy if "reveal_policy" in fields else None,
            importance=self.importance,
            pinned=self.pinned,
            category=self.category,
            status=self.status,
        )


class ExtractionResponse(BaseModel):
    """What the extraction model is asked to return."""

    ops: list[Any] = Field(default_factory=list, max_length=MAX_OPS_PER_EXTRACTION)


@dataclass
class ValidationReport:
    """Outcome of validating a batch of raw operations."""

    valid: list[MemoryOperation] = field(default_factory=list)
    rejected: list[tuple[Any, str]] = field(default_factory=list)


def parse_operation(data: Any) -> MemoryOperation:
    """Validate a single raw operation.

    Raises:
        ValidationError: If the operation is malformed.
    """
    if isinstance(data, MemoryOperation):
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"Operation must be an object, got {type(data).__name__}")
    try:
        return MemoryOperation.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid memory operation: {e}", errors=e.errors()) from e


def validate_operations(items: Iterable[Any]) -> ValidationReport:
    """Split raw operations into valid ones and rejected ones.

    A rejected entry is skipped whole; nothing from it reaches the store.
    """
    report = ValidationReport()
    for item in items:
        try:
            report.valid.append(parse_operation(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid memory operation: {item!r} ({e})")
            report.rejected.append((item, str(e)))
    return report


def strip_code_fence(content: str) -> str:
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
    return "\n".join(lines)


def parse_extraction(content: str) -> ValidationReport:
    """Parse a raw model reply into validated operations.

    Raises:
        ValidationError: If the reply is not the expected JSON envelope.
    """
    try:
        data = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Extraction reply is not JSON: {e}") from e

    try:
        envelope = ExtractionResponse.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid extraction envelope: {e}", errors=e.errors()) from e

    return validate_operations(envelope.ops)
