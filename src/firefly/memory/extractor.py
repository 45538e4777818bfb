"""Memory operation extraction from a chat turn using an LLM."""

import logging

from groq import AsyncGroq

from .errors import ValidationError
from .models import OperationType, RevealPolicy
from .schema import MemoryOperation, parse_extraction

logger = logging.getLogger(__name__)

SENSITIVE_CATEGORIES = (
    "mental_health",
    "diagnosis",
    "self_harm_history",
    "substance_use",
    "trauma_details",
    "sexual_content",
    "medical_conditions",
)

EXTRACTION_PROMPT = """You maintain long-term memory for a companion assistant.
Read the turn below and decide what, if anything, should change in memory.

Return ONLY valid JSON:
{
  "ops": [
    {
      "op": "UPSERT" | "CORRECT" | "DISCARD" | "NO_STORE",
      "key": "<dotted.topic.key>",
      "value": <string or JSON>,
      "display_text": "<short third-person sentence>",
      "trigger_terms": ["<word the user would say>", ...],
      "emotional_weight": "light" | "neutral" | "heavy",
      "relational_context": ["self" | "child" | "partner" | "parent" | "work" | "health" | "legal" | "home" | "identity" | "pet", ...],
      "reveal_policy": "normal" | "user_trigger_only" | "never",
      "category": "people" | "issues" | "constraints" | "hypotheses" | "notes",
      "confidence": <0..1>,
      "importance": <1..10>
    }
  ]
}

Rules:
- Only STABLE facts, not passing states ("is tired today")
- Use CORRECT when the user says something you remembered is wrong
- Use DISCARD when the user asks you to forget something
- Sensitive topics (health, trauma, substance use, sexuality) use "user_trigger_only"
- Keys are lowercase, dotted and descriptive: pet.name, work.employer, family.child.name
- If nothing is worth remembering, return {"ops": []}

Turn to analyze:
"""


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(category in lowered for category in SENSITIVE_CATEGORIES)


def enforce_sensitive_policy(op: MemoryOperation) -> MemoryOperation:
    """Force user_trigger_only on writes to sensitive keys.

    An explicit "never" is kept since it is stricter.
    """
    if op.op not in (OperationType.UPSERT, OperationType.CORRECT):
        return op
    if not is_sensitive_key(op.key) or op.reveal_policy is RevealPolicy.NEVER:
        return op
    return op.model_copy(update={"reveal_policy": RevealPolicy.USER_TRIGGER_ONLY})


class OperationExtractor:
    """Proposes memory operations for a chat turn."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.3-70b-versatile",
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
        """
        self.client = llm_client
        self.model = model

    async def extract(
        self, user_text: str, assistant_text: str | None = None
    ) -> list[MemoryOperation]:
        """Extract candidate operations from one turn.

        Args:
            user_text: What the user said.
            assistant_text: The assistant's reply, if any.

        Returns:
            Validated operations, empty if none were found or on error.
        """
        if not (user_text or "").strip():
            return []

        full_prompt = EXTRACTION_PROMPT + self._format_turn(user_text, assistant_text)

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": full_prompt}],
                temperature=0.1,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")
            return []

        try:
            report = parse_extraction(content)
        except ValidationError as e:
            logger.warning(f"Discarding extraction reply: {e}")
            return []

        return [enforce_sensitive_policy(op) for op in report.valid]

    def _format_turn(self, user_text: str, assistant_text: str | None) -> str:
        lines = [f"User: {user_text}"]
        if assistant_text:
            lines.append(f"Assistant: {assistant_text}")
        return "\n".join(lines)
