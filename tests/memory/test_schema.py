"""Tests for memory operation validation."""

import pytest

from firefly.memory.errors import ValidationError
from firefly.memory.models import OperationType, RelationalContext, RevealPolicy
from firefly.memory.schema import (
    MemoryOperation,
    parse_extraction,
    parse_operation,
    validate_operations,
)


class TestParseOperation:
    """Tests for single-operation validation."""

    def test_valid_upsert(self):
        op = parse_operation(
            {
                "op": "upsert",
                "key": " pet.name ",
                "value": "Ember",
                "trigger_terms": ["ember", " ", "cat "],
                "relational_context": ["pet"],
                "importance": 8,
            }
        )
        assert op.op is OperationType.UPSERT
        assert op.key == "pet.name"
        assert op.trigger_terms == ["ember", "cat"]
        assert op.relational_context == [RelationalContext.PET]
        assert op.confidence == 0.75

    def test_short_key_rejected(self):
        with pytest.raises(ValidationError):
            parse_operation({"op": "UPSERT", "key": "ab", "value": "x"})

    def test_missing_value_rejected(self):
        with pytest.raises(ValidationError):
            parse_operation({"op": "CORRECT", "key": "pet.name"})

    def test_unknown_op_rejected(self):
        with pytest.raises(ValidationError):
            parse_operation({"op": "MERGE", "key": "pet.name", "value": "x"})

    def test_unknown_reveal_policy_rejected(self):
        with pytest.raises(ValidationError):
            parse_operation(
                {"op": "UPSERT", "key": "pet.name", "value": "x", "reveal_policy": "sometimes"}
            )

    def test_confidence_out_of_range(self):
        with pytest.raises(ValidationError):
            parse_operation({"op": "UPSERT", "key": "pet.name", "value": "x", "confidence": 1.5})

    def test_no_store_needs_nothing(self):
        op = parse_operation({"op": "NO_STORE"})
        assert op.op is OperationType.NO_STORE

    def test_discard_by_id(self):
        op = parse_operation({"op": "DISCARD", "fact_id": "abc"})
        assert op.fact_id == "abc"

    def test_discard_by_key(self):
        op = parse_operation({"op": "DISCARD", "key": "pet.name"})
        assert op.key == "pet.name"

    def test_non_dict_rejected(self):
        with pytest.raises(ValidationError):
            parse_operation(["UPSERT"])

    def test_structured_value_allowed(self):
        op = parse_operation({"op": "UPSERT", "key": "pet.info", "value": {"name": "Ember"}})
        assert op.value == {"name": "Ember"}

    def test_unknown_fields_ignored(self):
        op = parse_operation({"op": "UPSERT", "key": "pet.name", "value": "x", "mood": "happy"})
        assert op.key == "pet.name"


class TestToCandidate:
    """Tests for converting operations into store candidates."""

    def test_unset_metadata_stays_none(self):
        candidate = parse_operation({"op": "UPSERT", "key": "pet.name", "value": "x"}).to_candidate()
        assert candidate.trigger_terms is None
        assert candidate.reveal_policy is None
        assert candidate.emotional_weight is None
        assert candidate.relational_context is None

    def test_set_metadata_carried(self):
        candidate = parse_operation(
            {
                "op": "UPSERT",
                "key": "health.note",
                "value": "x",
                "reveal_policy": "user_trigger_only",
                "trigger_terms": ["asthma"],
                "importance": 3,
            }
        ).to_candidate()
        assert candidate.reveal_policy is RevealPolicy.USER_TRIGGER_ONLY
        assert candidate.trigger_terms == ("asthma",)
        assert candidate.importance == 3


class TestValidateOperations:
    """Tests for batch validation."""

    def test_splits_valid_and_rejected(self):
        report = validate_operations(
            [
                {"op": "UPSERT", "key": "pet.name", "value": "Ember"},
                {"op": "UPSERT", "key": "x"},
                "garbage",
            ]
        )
        assert len(report.valid) == 1
        assert len(report.rejected) == 2

    def test_accepts_existing_models(self):
        op = MemoryOperation(op=OperationType.NO_STORE)
        assert validate_operations([op]).valid == [op]


class TestParseExtraction:
    """Tests for parsing a raw model reply."""

    def test_plain_json(self):
        report = parse_extraction('{"ops": [{"op": "UPSERT", "key": "pet.name", "value": "Ember"}]}')
        assert [op.key for op in report.valid] == ["pet.name"]

    def test_code_fence(self):
        content = '```json\n{"ops": [{"op": "NO_STORE"}]}\n```'
        report = parse_extraction(content)
        assert report.valid[0].op is OperationType.NO_STORE

    def test_empty_ops(self):
        assert parse_extraction('{"ops": []}').valid == []

    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            parse_extraction("not json at all")

    def test_ops_not_a_list(self):
        with pytest.raises(ValidationError):
            parse_extraction('{"ops": "UPSERT"}')

    def test_too_many_ops(self):
        ops = ",".join('{"op": "NO_STORE"}' for _ in range(21))
        with pytest.raises(ValidationError):
            parse_extraction('{"ops": [' + ops + "]}")

    def test_bad_item_rejected_alone(self):
        report = parse_extraction(
            '{"ops": [{"op": "UPSERT", "key": "pet.name", "value": "Ember"}, 42]}'
        )
        assert len(report.valid) == 1
        assert len(report.rejected) == 1
