"""Tests for memory CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from firefly.config import FireflyConfig
from firefly.memory.audit import SQLiteAuditSink
from firefly.memory.cli import create_parser, run_memory_cli
from firefly.memory.models import FactCandidate, Owner
from firefly.memory.store import MemoryStore

OWNER = Owner("alice")


@pytest.fixture
def config(tmp_path: Path) -> FireflyConfig:
    return FireflyConfig(db_path=tmp_path / "memory.db", log_dir=tmp_path / "logs")


@pytest.fixture
def store(config: FireflyConfig) -> MemoryStore:
    """Store sharing the CLI's database, with audit events enabled."""
    store = MemoryStore(config.db_path, audit=SQLiteAuditSink(config.db_path))
    store.init_db()
    yield store
    store.close()


def run(config: FireflyConfig, *argv: str) -> int:
    with patch("firefly.memory.cli.load_config", return_value=config):
        return run_memory_cli(["--user", "alice", *argv])


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, capsys):
        assert run_memory_cli([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_owner_options(self):
        args = create_parser().parse_args(["--user", "bob", "--project", "p1", "list"])
        assert args.user == "bob"
        assert args.project == "p1"
        assert args.command == "list"


class TestListCommand:
    """Tests for 'firefly memory list'."""

    def test_empty(self, config: FireflyConfig, capsys):
        assert run(config, "list") == 0
        assert "No memories found." in capsys.readouterr().out

    def test_shows_facts(self, config: FireflyConfig, store: MemoryStore, capsys):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "list") == 0
        out = capsys.readouterr().out
        assert "pet.name" in out
        assert "1 memory item(s)" in out

    def test_other_owner_hidden(self, config: FireflyConfig, store: MemoryStore, capsys):
        store.upsert(Owner("bob"), "pet.name", FactCandidate(value="Ember"))
        run(config, "list")
        assert "No memories found." in capsys.readouterr().out


class TestIdCommands:
    """Tests for pin, unpin, discard and confirm."""

    def test_pin(self, config: FireflyConfig, store: MemoryStore):
        fact = store.upsert(OWNER, "pet.name", FactCandidate(value="Ember")).fact
        assert run(config, "pin", fact.id) == 0
        assert store.get(fact.id).pinned is True
        assert run(config, "unpin", fact.id) == 0
        assert store.get(fact.id).pinned is False

    def test_discard(self, config: FireflyConfig, store: MemoryStore):
        fact = store.upsert(OWNER, "pet.name", FactCandidate(value="Ember")).fact
        assert run(config, "discard", fact.id) == 0
        assert store.get(fact.id).is_discarded

    def test_confirm(self, config: FireflyConfig, store: MemoryStore):
        fact = store.upsert(OWNER, "pet.name", FactCandidate(value="Ember")).fact
        assert run(config, "confirm", fact.id) == 0
        assert store.get(fact.id).confirmed_at is not None

    def test_unknown_id(self, config: FireflyConfig, capsys):
        assert run(config, "pin", "missing") == 1
        assert "not found" in capsys.readouterr().out


class TestCorrectAndForget:
    """Tests for correct and forget."""

    def test_correct(self, config: FireflyConfig, store: MemoryStore, capsys):
        assert run(config, "correct", "family.child", "Maya") == 0
        assert "corrected" in capsys.readouterr().out.lower()
        fact = store.find_by_key(OWNER, "family.child")
        assert fact.value == "Maya"
        assert fact.pinned is True

    def test_correct_invalid_key(self, config: FireflyConfig, capsys):
        assert run(config, "correct", "ab", "Maya") == 1
        assert "Error" in capsys.readouterr().out

    def test_forget(self, config: FireflyConfig, store: MemoryStore):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "forget", "pet.name") == 0
        assert store.find_by_key(OWNER, "pet.name") is None

    def test_forget_missing(self, config: FireflyConfig):
        assert run(config, "forget", "pet.name") == 1


class TestExportCommand:
    """Tests for 'firefly memory export'."""

    def test_to_stdout(self, config: FireflyConfig, store: MemoryStore, capsys):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "export") == 0
        out = capsys.readouterr().out
        assert "# Firefly Memory Export" in out
        assert "- (notes/open) pet.name: Ember" in out

    def test_to_file(self, config: FireflyConfig, store: MemoryStore, tmp_path: Path):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        target = tmp_path / "export.md"
        assert run(config, "export", "-o", str(target)) == 0
        assert "pet.name: Ember" in target.read_text()


class TestDecayCommand:
    """Tests for 'firefly memory decay'."""

    def test_runs_pass(self, config: FireflyConfig, store: MemoryStore, capsys):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "decay", "--policy", "incremental") == 0
        assert "Processed: 1" in capsys.readouterr().out
        assert store.find_by_key(OWNER, "pet.name").strength == pytest.approx(1.75 * 0.98)

    def test_writes_event_log(self, config: FireflyConfig, store: MemoryStore):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "decay", "--policy", "incremental") == 0

        log_path = config.log_dir / "memory.jsonl"
        entries = [json.loads(line) for line in log_path.read_text().splitlines()]
        cycles = [e for e in entries if e["event"] == "decay_cycle"]
        assert len(cycles) == 1
        assert cycles[0]["extra"]["processed"] == 1


class TestEventsCommand:
    """Tests for 'firefly memory events'."""

    def test_shows_events(self, config: FireflyConfig, store: MemoryStore, capsys):
        store.upsert(OWNER, "pet.name", FactCandidate(value="Ember"))
        assert run(config, "events") == 0
        out = capsys.readouterr().out
        assert "create" in out
        assert "pet.name" in out

    def test_no_events(self, config: FireflyConfig, capsys):
        assert run(config, "events") == 0
        assert "No events found." in capsys.readouterr().out
