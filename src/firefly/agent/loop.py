"""Chat loop: recall, reply, remember."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from groq import AsyncGroq

from ..memory.errors import FireflyMemoryError
from ..memory.models import Owner
from ..memory.protocol import ApplyReport
from .prompt import build_system_prompt

if TYPE_CHECKING:
    from ..memory import MemoryManager

logger = logging.getLogger(__name__)


@dataclass
class AgentConfig:
    """Configuration for the chat loop."""

    model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    extract_after_turn: bool = True


@dataclass
class AgentResult:
    """Result from one chat turn."""

    response: str
    used_keys: list[str] = field(default_factory=list)
    report: ApplyReport | None = None
    memory_error: str | None = None


class AgentLoop:
    """One reply per user message, with memory before and after.

    Memory failures are logged and recorded on the result; they never
    prevent the reply.
    """

    def __init__(
        self,
        owner: Owner,
        config: AgentConfig | None = None,
        groq_client: AsyncGroq | None = None,
        memory: MemoryManager | None = None,
    ) -> None:
        self.owner = owner
        self.config = config or AgentConfig()
        self.client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        self.memory = memory

    async def run(
        self,
        message: str,
        history: list[dict[str, Any]] | None = None,
    ) -> AgentResult:
        """Run one turn for a user message.

        Args:
            message: The current user message.
            history: Optional conversation history to inject between
                     system prompt and current message.

        Returns:
            AgentResult with the reply and memory bookkeeping.
        """
        memory_block = ""
        used_keys: list[str] = []
        errors: list[str] = []

        if self.memory:
            try:
                turn = await self.memory.context_for_turn(self.owner, message)
                memory_block = turn.memory_block
                used_keys = turn.used_keys
            except FireflyMemoryError as e:
                logger.warning(f"Memory retrieval failed, replying without memory: {e}")
                errors.append(str(e))

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(memory_block)},
        ]
        if history:
            messages.extend(history)
        messages.append({"role": "user", "content": message})

        response = await self.client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            temperature=self.config.temperature,
        )
        reply = response.choices[0].message.content or ""

        report = None
        if self.memory:
            report = await self._remember(message, reply, used_keys, errors)

        return AgentResult(
            response=reply,
            used_keys=used_keys,
            report=report,
            memory_error="; ".join(errors) if errors else None,
        )

    async def _remember(
        self, message: str, reply: str, used_keys: list[str], errors: list[str]
    ) -> ApplyReport | None:
        assert self.memory is not None

        if used_keys:
            try:
                self.memory.reinforce(self.owner, used_keys)
            except FireflyMemoryError as e:
                logger.warning(f"Reinforcement failed: {e}")
                errors.append(str(e))

        if not self.config.extract_after_turn:
            return None

        try:
            report = await self.memory.record_turn(self.owner, message, reply)
        except FireflyMemoryError as e:
            logger.warning(f"Recording turn failed: {e}")
            errors.append(str(e))
            return None

        errors.extend(str(err) for err in report.errors)
        return report
