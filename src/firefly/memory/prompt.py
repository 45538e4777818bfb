"""Reveal-policy gating and grouping of facts into a prompt block."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from .models import MemoryFact, RevealPolicy

CATEGORIES = ("people", "issues", "constraints", "hypotheses", "notes")
FALLBACK_CATEGORY = "notes"

PHRASE_PREFIX_CHARS = 32
MIN_PHRASE_CHARS = 10
HYPOTHESIS_HEAVY_COUNT = 3

FALLBACK_QUESTION = (
    "I'm not sure which part matters most right now. Focus: people involved, "
    "the decision you're making, or the idea itself?"
)

UNCERTAINTY_INSTRUCTION = """If you do not have retrieved memory about a claimed fact, do not pretend.
Ask a short clarifying question or speak generally.
Never state "as you said earlier" unless it is present in retrieved memory."""


@dataclass(frozen=True)
class AssembledContext:
    """Facts that survived gating, grouped by category.

    Attributes:
        grouped: Category name to rendered lines, in CATEGORIES order.
        fallback_prompt: Clarifying question to ask instead of relying on
            speculative context, or None.
        fact_keys: Keys of every fact included, for later reinforcement.
    """

    grouped: dict[str, list[str]] = field(default_factory=dict)
    fallback_prompt: str | None = None
    fact_keys: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any(self.grouped.values())


def _norm(text: str) -> str:
    return (text or "").lower()


def message_triggers_fact(fact: MemoryFact, text: str) -> bool:
    """Keyword containment test for user_trigger_only facts.

    A fact is triggered when the text contains one of its trigger terms, or
    the first characters of its display text (at least MIN_PHRASE_CHARS).
    """
    haystack = _norm(text)
    for term in fact.trigger_terms:
        needle = _norm(term).strip()
        if needle and needle in haystack:
            return True

    phrase = _norm(fact.display_text)[:PHRASE_PREFIX_CHARS]
    return len(phrase) >= MIN_PHRASE_CHARS and phrase in haystack


def select_for_prompt(facts: Iterable[MemoryFact], text: str) -> list[MemoryFact]:
    """Apply reveal policies: never is dropped, user_trigger_only needs a trigger."""
    selected = []
    for fact in facts:
        if fact.is_discarded or fact.reveal_policy is RevealPolicy.NEVER:
            continue
        if fact.reveal_policy is RevealPolicy.USER_TRIGGER_ONLY and not message_triggers_fact(
            fact, text
        ):
            continue
        selected.append(fact)
    return selected


def within_window(fact: MemoryFact, decay_window: timedelta, now: datetime) -> bool:
    """Pinned and locked facts ignore the window."""
    if fact.pinned or fact.is_locked:
        return True
    reference = fact.last_reinforced_at or fact.updated_at
    if reference is None:
        return True
    return now - reference <= decay_window


def _render_line(fact: MemoryFact, category: str) -> str:
    if category == "hypotheses":
        return f"({fact.status}) {fact.display_text}"
    return fact.display_text


def assemble(
    facts: Iterable[MemoryFact],
    query_text: str,
    decay_window: timedelta,
    now: datetime,
) -> AssembledContext:
    """Build grouped prompt context from retrieved facts.

    Steps: drop discarded facts, drop facts outside the decay window
    (unless pinned or locked), apply reveal-policy gating, then group by
    category. Facts whose category is not one of CATEGORIES are grouped
    as notes. The output depends only on the inputs.
    """
    seen: set[str] = set()
    live: list[MemoryFact] = []
    for fact in facts:
        if fact.id in seen or fact.is_discarded:
            continue
        seen.add(fact.id)
        if within_window(fact, decay_window, now):
            live.append(fact)

    allowed = select_for_prompt(live, query_text)

    grouped: dict[str, list[str]] = {name: [] for name in CATEGORIES}
    for fact in allowed:
        category = fact.category if fact.category in grouped else FALLBACK_CATEGORY
        grouped[category].append(_render_line(fact, category))

    hypothesis_heavy = (
        len(grouped["hypotheses"]) >= HYPOTHESIS_HEAVY_COUNT
        and not grouped["issues"]
        and not grouped["constraints"]
    )

    return AssembledContext(
        grouped=grouped,
        fallback_prompt=FALLBACK_QUESTION if hypothesis_heavy else None,
        fact_keys=[fact.key for fact in allowed],
    )


def render_memory_block(context: AssembledContext) -> str:
    """Format assembled context for injection into the system prompt.

    Returns:
        A <memory> block, or an empty string when nothing survived.
    """
    if context.is_empty:
        return ""

    sections = []
    for name in CATEGORIES:
        lines = context.grouped.get(name) or []
        if lines:
            body = "\n".join(f"- {line}" for line in lines)
            sections.append(f"{name.capitalize()}:\n{body}")

    block = "\n\n".join(sections)
    if context.fallback_prompt:
        block += (
            "\n\nMost of this is unconfirmed. Before relying on it, ask: "
            f"{context.fallback_prompt}"
        )

    return f"""<memory>
What you know about the user:
{block}
</memory>"""


def uncertainty_instruction(has_memory: bool) -> str:
    """Guard against invented recall when no memory was retrieved."""
    return "" if has_memory else UNCERTAINTY_INSTRUCTION
