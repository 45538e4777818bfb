"""Prompt builder for the chat agent."""

from ..memory.prompt import uncertainty_instruction

SYSTEM_PROMPT_BASE = """You are Firefly, a warm and attentive companion.

Talk with the user the way a thoughtful friend would: listen, ask when
something is unclear, and keep replies short unless asked for more.

Use what you remember about the user naturally. Never recite the memory
block back, and never bring up sensitive details the user has not raised."""


def build_system_prompt(memory_block: str = "") -> str:
    """Build the system prompt with the user's memory.

    Args:
        memory_block: Optional <memory> block rendered for this turn.

    Returns:
        Complete system prompt string. Without memory, the prompt carries an
        instruction not to invent recall.
    """
    prompt = SYSTEM_PROMPT_BASE

    if memory_block.strip():
        prompt += "\n\n" + memory_block
    else:
        prompt += "\n\n" + uncertainty_instruction(has_memory=False)

    return prompt
