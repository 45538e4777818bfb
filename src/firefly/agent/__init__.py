"""Chat loop with memory."""

from .loop import AgentConfig, AgentLoop, AgentResult
from .prompt import build_system_prompt

__all__ = ["AgentConfig", "AgentLoop", "AgentResult", "build_system_prompt"]
