"""Deterministic capture of the people and pets a user names.

"my daughter Maya" or "our dog Ember" is too important to leave to the
extraction model, so these phrasings become UPSERT operations without an
LLM call. Names must be capitalized; the possessive and the role word may
be any case.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import OperationType, RelationalContext
from .schema import MemoryOperation

logger = logging.getLogger(__name__)

MAX_BASICS_OPS = 2
BASICS_CONFIDENCE = 0.99

_NAME = r"([A-Z][a-zA-Z'-]{1,30})"

PERSON_PATTERN = re.compile(
    r"\b(?i:my)\s+"
    r"(?i:(daughter|son|kid|partner|husband|wife|mom|mother|dad|father|friend))\s+" + _NAME
)
PET_PATTERN = re.compile(r"\b(?i:my|our)\s+(?i:(dog|cat))\s+" + _NAME)


@dataclass(frozen=True)
class Role:
    name: str
    importance: int
    context: RelationalContext


_ROLES = {
    "daughter": Role("child", 10, RelationalContext.CHILD),
    "son": Role("child", 10, RelationalContext.CHILD),
    "kid": Role("child", 10, RelationalContext.CHILD),
    "partner": Role("partner", 9, RelationalContext.PARTNER),
    "husband": Role("partner", 9, RelationalContext.PARTNER),
    "wife": Role("partner", 9, RelationalContext.PARTNER),
    "mom": Role("parent", 9, RelationalContext.PARENT),
    "mother": Role("parent", 9, RelationalContext.PARENT),
    "dad": Role("parent", 9, RelationalContext.PARENT),
    "father": Role("parent", 9, RelationalContext.PARENT),
    "friend": Role("friend", 7, RelationalContext.SELF),
}

PET_IMPORTANCE = 8


def _person_op(name: str, relationship: str) -> MemoryOperation:
    role = _ROLES[relationship]
    return MemoryOperation(
        op=OperationType.UPSERT,
        key=f"person.{name.lower()}",
        value={"name": name, "relationship": relationship, "role": role.name},
        display_text=f"{name} ({relationship})",
        trigger_terms=[name, relationship, role.name],
        relational_context=[role.context],
        confidence=BASICS_CONFIDENCE,
        importance=role.importance,
        category="people",
    )


def _pet_op(name: str, species: str) -> MemoryOperation:
    return MemoryOperation(
        op=OperationType.UPSERT,
        key=f"pet.{name.lower()}",
        value={"name": name, "species": species},
        display_text=f"{name} ({species})",
        trigger_terms=[name, species],
        relational_context=[RelationalContext.PET, RelationalContext.HOME],
        confidence=BASICS_CONFIDENCE,
        importance=PET_IMPORTANCE,
        category="people",
    )


def friend_basics_ops(user_text: str) -> list[MemoryOperation]:
    """Return UPSERTs for the people and pets named in `user_text`.

    People come before pets, repeats are collapsed, and at most
    MAX_BASICS_OPS operations are returned.
    """
    if not (user_text or "").strip():
        return []

    ops: list[MemoryOperation] = []
    seen: set[str] = set()
    for match in PERSON_PATTERN.finditer(user_text):
        relationship, name = match.group(1).lower(), match.group(2)
        op = _person_op(name, relationship)
        if op.key not in seen:
            seen.add(op.key)
            ops.append(op)
    for match in PET_PATTERN.finditer(user_text):
        species, name = match.group(1).lower(), match.group(2)
        op = _pet_op(name, species)
        if op.key not in seen:
            seen.add(op.key)
            ops.append(op)

    if len(ops) > MAX_BASICS_OPS:
        logger.debug(f"Keeping {MAX_BASICS_OPS} of {len(ops)} named people and pets")
    return ops[:MAX_BASICS_OPS]


def merge_operations(
    basics: list[MemoryOperation], extracted: list[MemoryOperation]
) -> list[MemoryOperation]:
    """Combine deterministic and extracted operations; a key is written once.

    Deterministic operations win over extracted ones for the same key.
    """
    keys = {op.key for op in basics}
    return [*basics, *(op for op in extracted if not op.key or op.key not in keys)]
