"""Tests for the agent system prompt."""

from firefly.agent.prompt import SYSTEM_PROMPT_BASE, build_system_prompt
from firefly.memory.prompt import UNCERTAINTY_INSTRUCTION


class TestBuildSystemPrompt:
    """Tests for build_system_prompt."""

    def test_without_memory_adds_uncertainty_instruction(self):
        prompt = build_system_prompt()
        assert prompt.startswith(SYSTEM_PROMPT_BASE)
        assert UNCERTAINTY_INSTRUCTION in prompt

    def test_blank_memory_treated_as_none(self):
        assert UNCERTAINTY_INSTRUCTION in build_system_prompt("   \n")

    def test_with_memory_block(self):
        block = "<memory>\n- Ember is the user's dog\n</memory>"
        prompt = build_system_prompt(block)
        assert prompt.endswith(block)
        assert UNCERTAINTY_INSTRUCTION not in prompt
