"""Tests for deterministic people and pet capture."""

from firefly.memory.basics import friend_basics_ops, merge_operations
from firefly.memory.models import OperationType, RelationalContext
from firefly.memory.schema import parse_operation


class TestFriendBasicsOps:
    """Tests for friend_basics_ops."""

    def test_person(self):
        [op] = friend_basics_ops("my daughter Maya starts school today")
        assert op.op is OperationType.UPSERT
        assert op.key == "person.maya"
        assert op.value == {"name": "Maya", "relationship": "daughter", "role": "child"}
        assert op.display_text == "Maya (daughter)"
        assert op.trigger_terms == ["Maya", "daughter", "child"]
        assert op.relational_context == [RelationalContext.CHILD]
        assert op.importance == 10
        assert op.confidence == 0.99
        assert op.category == "people"

    def test_sentence_start_possessive(self):
        [op] = friend_basics_ops("My husband Tom cooked dinner")
        assert op.key == "person.tom"
        assert op.importance == 9
        assert op.relational_context == [RelationalContext.PARTNER]

    def test_friend_is_self_context(self):
        [op] = friend_basics_ops("I saw my friend Priya")
        assert op.importance == 7
        assert op.relational_context == [RelationalContext.SELF]

    def test_pet(self):
        [op] = friend_basics_ops("Our dog Ember chewed a shoe")
        assert op.key == "pet.ember"
        assert op.value == {"name": "Ember", "species": "dog"}
        assert op.trigger_terms == ["Ember", "dog"]
        assert op.relational_context == [RelationalContext.PET, RelationalContext.HOME]
        assert op.importance == 8

    def test_lowercase_name_ignored(self):
        assert friend_basics_ops("my dog is Ember") == []
        assert friend_basics_ops("my mom said hi") == []

    def test_empty_text(self):
        assert friend_basics_ops("   ") == []

    def test_repeats_collapsed(self):
        ops = friend_basics_ops("my son Leo and again my son Leo")
        assert [op.key for op in ops] == ["person.leo"]

    def test_capped_people_first(self):
        ops = friend_basics_ops("my cat Miso, my mom Ana and my dad Rui")
        assert [op.key for op in ops] == ["person.ana", "person.rui"]


class TestMergeOperations:
    """Tests for combining deterministic and extracted operations."""

    def test_basics_win_on_key(self):
        basics = friend_basics_ops("my daughter Maya")
        extracted = [
            parse_operation({"op": "UPSERT", "key": "person.maya", "value": "kid"}),
            parse_operation({"op": "UPSERT", "key": "work.job", "value": "nurse"}),
        ]
        merged = merge_operations(basics, extracted)
        assert [op.key for op in merged] == ["person.maya", "work.job"]
        assert merged[0].confidence == 0.99

    def test_no_store_kept(self):
        extracted = [parse_operation({"op": "NO_STORE"})]
        assert merge_operations([], extracted) == extracted
