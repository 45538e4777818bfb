"""Tests for the chat CLI."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from firefly.agent import AgentResult
from firefly.cli import CLI, MAX_HISTORY_MESSAGES
from firefly.config import FireflyConfig
from firefly.memory.models import FactCandidate, Owner
from firefly.memory.protocol import ApplyReport, OperationResult, OperationStatus
from firefly.memory.schema import parse_operation


def make_response(content: str) -> Mock:
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def client() -> AsyncMock:
    client = AsyncMock()
    client.chat.completions.create.return_value = make_response("Hello!")
    return client


@pytest.fixture
def cli(tmp_path: Path, client: AsyncMock) -> CLI:
    config = FireflyConfig(db_path=tmp_path / "memory.db", log_dir=tmp_path / "logs")
    cli = CLI(Owner("alice"), config=config, groq_client=client)
    yield cli
    cli.runtime.close()


def test_handle_command_exit(cli: CLI) -> None:
    """Test exit commands return False."""
    assert cli._handle_command("/exit") is False
    assert cli._handle_command("/quit") is False


def test_handle_command_help(cli: CLI) -> None:
    """Test help command returns True."""
    assert cli._handle_command("/help") is True


def test_handle_command_reset(cli: CLI) -> None:
    """Reset clears the conversation history."""
    cli._history = [{"role": "user", "content": "hi"}]
    assert cli._handle_command("/reset") is True
    assert cli._history == []


def test_show_memory(cli: CLI, capsys) -> None:
    cli.runtime.store.upsert(Owner("alice"), "pet.name", FactCandidate(value="Ember"))
    cli._handle_command("/memory")
    assert "pet.name: Ember" in capsys.readouterr().out


def test_show_memory_empty(cli: CLI, capsys) -> None:
    cli._handle_command("/memory")
    assert "Nothing remembered yet." in capsys.readouterr().out


def test_format_response_plain(cli: CLI) -> None:
    output = cli._format_response(AgentResult(response="Hello!"))
    assert "Hello!" in output
    assert "memory" not in output


def test_format_response_with_memory_notes(cli: CLI) -> None:
    op = parse_operation({"op": "UPSERT", "key": "pet.name", "value": "Ember"})
    report = ApplyReport(results=[OperationResult(op.op, "pet.name", OperationStatus.CREATED)])
    output = cli._format_response(
        AgentResult(response="Nice!", report=report, memory_error="disk gone")
    )
    assert "(memory: pet.name created)" in output
    assert "(memory unavailable: disk gone)" in output


@pytest.mark.asyncio
async def test_process_message_keeps_history(cli: CLI, capsys) -> None:
    await cli._process_message("Hi")
    assert cli._history == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
    ]
    assert "Hello!" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_history_is_capped(cli: CLI) -> None:
    for i in range(MAX_HISTORY_MESSAGES):
        await cli._process_message(f"message {i}")
    assert len(cli._history) == MAX_HISTORY_MESSAGES
    assert cli._history[-2]["content"] == f"message {MAX_HISTORY_MESSAGES - 1}"


@pytest.mark.asyncio
async def test_process_message_error(cli: CLI, client: AsyncMock, capsys) -> None:
    client.chat.completions.create.side_effect = RuntimeError("rate limited")
    await cli._process_message("Hi")
    assert "Error: rate limited" in capsys.readouterr().out
    assert cli._history == []
