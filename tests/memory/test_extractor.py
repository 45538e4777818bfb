"""Tests for OperationExtractor."""

from unittest.mock import AsyncMock, Mock

import pytest

from firefly.memory.extractor import (
    OperationExtractor,
    enforce_sensitive_policy,
    is_sensitive_key,
)
from firefly.memory.models import OperationType, RevealPolicy
from firefly.memory.schema import parse_operation


@pytest.fixture
def mock_client() -> AsyncMock:
    """Create a mock Groq client."""
    return AsyncMock()


@pytest.fixture
def extractor(mock_client: AsyncMock) -> OperationExtractor:
    """Create an OperationExtractor with mock client."""
    return OperationExtractor(mock_client)


def make_response(content: str) -> Mock:
    """Create a mock LLM response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestOperationExtractorInit:
    """Tests for OperationExtractor initialization."""

    def test_default_model(self, mock_client: AsyncMock):
        assert OperationExtractor(mock_client).model == "llama-3.3-70b-versatile"

    def test_custom_model(self, mock_client: AsyncMock):
        assert OperationExtractor(mock_client, model="custom-model").model == "custom-model"


class TestExtract:
    """Tests for the extract method."""

    @pytest.mark.asyncio
    async def test_empty_text_returns_empty(self, extractor: OperationExtractor, mock_client):
        assert await extractor.extract("   ") == []
        mock_client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_extraction(self, extractor: OperationExtractor, mock_client: AsyncMock):
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response(
                '{"ops": [{"op": "UPSERT", "key": "pet.Ember", '
                '"value": {"species": "dog"}, "importance": 8}]}'
            )
        )
        ops = await extractor.extract("My dog Ember is great", "Ember sounds lovely!")
        assert len(ops) == 1
        assert ops[0].op is OperationType.UPSERT
        assert ops[0].value == {"species": "dog"}
        assert ops[0].importance == 8

    @pytest.mark.asyncio
    async def test_prompt_contains_turn(self, extractor: OperationExtractor, mock_client: AsyncMock):
        mock_client.chat.completions.create = AsyncMock(return_value=make_response('{"ops": []}'))
        await extractor.extract("I live in Lisbon", "Nice city")
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        prompt = kwargs["messages"][0]["content"]
        assert "User: I live in Lisbon" in prompt
        assert "Assistant: Nice city" in prompt
        assert kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_markdown_wrapped_response(
        self, extractor: OperationExtractor, mock_client: AsyncMock
    ):
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response('```json\n{"ops": [{"op": "NO_STORE"}]}\n```')
        )
        ops = await extractor.extract("hello")
        assert [op.op for op in ops] == [OperationType.NO_STORE]

    @pytest.mark.asyncio
    async def test_invalid_json_returns_empty(
        self, extractor: OperationExtractor, mock_client: AsyncMock
    ):
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response("I could not find anything")
        )
        assert await extractor.extract("hello") == []

    @pytest.mark.asyncio
    async def test_api_error_returns_empty(
        self, extractor: OperationExtractor, mock_client: AsyncMock
    ):
        mock_client.chat.completions.create = AsyncMock(side_effect=Exception("API down"))
        assert await extractor.extract("hello") == []

    @pytest.mark.asyncio
    async def test_invalid_items_skipped(
        self, extractor: OperationExtractor, mock_client: AsyncMock
    ):
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response(
                '{"ops": [{"op": "UPSERT", "key": "ab", "value": "x"}, '
                '{"op": "UPSERT", "key": "work.employer", "value": "Acme"}]}'
            )
        )
        ops = await extractor.extract("I work at Acme")
        assert [op.key for op in ops] == ["work.employer"]

    @pytest.mark.asyncio
    async def test_sensitive_keys_forced_to_trigger_only(
        self, extractor: OperationExtractor, mock_client: AsyncMock
    ):
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response(
                '{"ops": [{"op": "UPSERT", "key": "health.mental_health", '
                '"value": "anxiety", "reveal_policy": "normal"}]}'
            )
        )
        ops = await extractor.extract("I have been dealing with anxiety")
        assert ops[0].reveal_policy is RevealPolicy.USER_TRIGGER_ONLY
        assert ops[0].to_candidate().reveal_policy is RevealPolicy.USER_TRIGGER_ONLY


class TestSensitivePolicy:
    """Tests for the sensitive-key rule."""

    def test_is_sensitive_key(self):
        assert is_sensitive_key("user.Medical_Conditions.asthma")
        assert not is_sensitive_key("pet.name")

    def test_never_is_kept(self):
        op = parse_operation(
            {"op": "UPSERT", "key": "trauma_details.x", "value": "v", "reveal_policy": "never"}
        )
        assert enforce_sensitive_policy(op).reveal_policy is RevealPolicy.NEVER

    def test_discard_untouched(self):
        op = parse_operation({"op": "DISCARD", "key": "diagnosis.x"})
        assert enforce_sensitive_policy(op) is op
