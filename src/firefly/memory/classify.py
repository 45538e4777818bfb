"""Turn classification: how much memory should take from a turn."""

import json
import logging
import re
from enum import Enum

from groq import AsyncGroq
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .models import OperationType
from .schema import MemoryOperation, strip_code_fence

logger = logging.getLogger(__name__)

RESPECTFUL_MIN_CONFIDENCE = 0.9

EXPLICIT_REMEMBER = re.compile(r"\bremember\b", re.IGNORECASE)


class MemoryMode(str, Enum):
    """How much a turn may write to memory.

    RECORDING extracts normally, RESPECTFUL keeps only high-confidence
    operations, and LISTENING writes nothing unless the user asks.
    """

    RECORDING = "recording"
    RESPECTFUL = "respectful"
    LISTENING = "listening"


class UserState(str, Enum):
    CALM = "calm"
    ACTIVE = "active"
    OVERWHELMED = "overwhelmed"
    VENTING = "venting"
    CRISIS = "crisis"


class TurnClass(BaseModel):
    """The classifier's verdict for one user message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    memory_mode: MemoryMode = MemoryMode.RECORDING
    should_extract: bool = True
    user_state: UserState = UserState.ACTIVE
    notes: str | None = None


CLASSIFY_PROMPT = """You decide how a companion assistant should treat memory for one message.

Return ONLY valid JSON:
{
  "memory_mode": "recording" | "respectful" | "listening",
  "should_extract": true | false,
  "user_state": "calm" | "active" | "overwhelmed" | "venting" | "crisis",
  "notes": "<short reason>"
}

Rules:
- "recording": ordinary conversation, remember stable facts as usual
- "respectful": the user shares something personal; remember only what is clearly stated
- "listening": the user is venting or in distress; do not store anything
  unless they explicitly ask you to remember it
- should_extract is false in listening mode

Message:
"""


def should_extract(turn: TurnClass, user_text: str) -> bool:
    """Decide whether extraction runs for this turn.

    An explicit "remember" from the user always allows extraction.
    """
    if EXPLICIT_REMEMBER.search(user_text or ""):
        return True
    if turn.memory_mode is MemoryMode.LISTENING:
        return False
    return turn.should_extract


def filter_for_mode(operations: list[MemoryOperation], turn: TurnClass) -> list[MemoryOperation]:
    """Drop operations the turn's mode does not allow.

    In respectful mode only confident writes survive. Corrections and
    discards always pass since the user asked for them.
    """
    if turn.memory_mode is not MemoryMode.RESPECTFUL:
        return operations
    return [
        op
        for op in operations
        if op.op in (OperationType.CORRECT, OperationType.DISCARD)
        or op.confidence >= RESPECTFUL_MIN_CONFIDENCE
    ]


class TurnClassifier:
    """Classifies a user message before extraction."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.3-70b-versatile",
    ) -> None:
        self.client = llm_client
        self.model = model

    async def classify(self, user_text: str) -> TurnClass:
        """Classify one message.

        Returns:
            The verdict, or the recording default when the model fails or
            replies with something unusable.
        """
        if not (user_text or "").strip():
            return TurnClass()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": CLASSIFY_PROMPT + user_text}],
                temperature=0.0,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning(f"Turn classification failed: {e}")
            return TurnClass()

        try:
            return TurnClass.model_validate(json.loads(strip_code_fence(content)))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Discarding classification reply: {e}")
            return TurnClass()
