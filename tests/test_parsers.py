"""Unit tests for payload decoding and schema-drift detection."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from portal.parsers import (
    DecodeFailure,
    LedgerPayload,
    PayloadKind,
    ProfilePayload,
    coerce_ledger_entry,
    decode_payload,
    ledger_key,
    looks_like_ledger,
)
from tests.archives import TRANSACTIONS, USER


class TestProfileDecoding:
    def test_profile_object(self) -> None:
        result = decode_payload(json.dumps(USER).encode(), PayloadKind.PROFILE)

        assert isinstance(result, ProfilePayload)
        fields = result.fields
        assert fields.user_id == "user-42"
        assert fields.first_name == "Ada"
        assert fields.birthday == date(1990, 5, 15)
        assert fields.country == "GB"

    def test_snake_case_keys_and_numeric_id(self) -> None:
        raw = json.dumps({"user_id": 7, "first_name": "Grace", "last_name": "Hopper"})

        result = decode_payload(raw, PayloadKind.PROFILE)

        assert isinstance(result, ProfilePayload)
        assert result.fields.user_id == "7"
        assert result.fields.birthday is None

    def test_blank_optional_fields_become_none(self) -> None:
        raw = json.dumps({"firstName": "A", "lastName": "B", "birthday": "", "userId": "  "})

        result = decode_payload(raw, PayloadKind.PROFILE)

        assert isinstance(result, ProfilePayload)
        assert result.fields.birthday is None
        assert result.fields.user_id is None

    def test_utf8_bom_is_accepted(self) -> None:
        raw = "\ufeff".encode() + json.dumps(USER).encode()
        assert isinstance(decode_payload(raw, PayloadKind.PROFILE), ProfilePayload)

    def test_syntax_error_is_typed_failure(self) -> None:
        raw = '{\n  "firstName": "Ada",\n  "lastName": \n}'

        result = decode_payload(raw, PayloadKind.PROFILE)

        assert isinstance(result, DecodeFailure)
        assert result.expected is PayloadKind.PROFILE
        assert result.content == raw
        assert result.line == 4
        assert result.column == 1
        assert "Invalid JSON syntax" in result.message

    def test_invalid_profile_fields(self) -> None:
        raw = json.dumps({"firstName": "Ada", "lastName": "L", "birthday": "not-a-date"})

        result = decode_payload(raw, PayloadKind.PROFILE)

        assert isinstance(result, DecodeFailure)
        assert "birthday" in result.message

    def test_non_utf8_bytes(self) -> None:
        result = decode_payload(b"\xff\xfe{", PayloadKind.PROFILE)

        assert isinstance(result, DecodeFailure)
        assert "UTF-8" in result.message


class TestSchemaDrift:
    def test_profile_file_holding_transactions_is_rerouted(self) -> None:
        result = decode_payload(json.dumps(TRANSACTIONS), PayloadKind.PROFILE)

        assert isinstance(result, LedgerPayload)
        assert result.rerouted is True
        assert len(result.entries) == 3

    def test_alternate_ledger_key_triggers_reroute(self) -> None:
        raw = json.dumps([{"transactionId": "T1", "amount": 1, "timestamp": "2024-01-01T00:00:00"}])

        result = decode_payload(raw, PayloadKind.PROFILE)

        assert isinstance(result, LedgerPayload)
        assert result.rerouted is True

    @pytest.mark.parametrize("payload", [[], [1, 2], [{"firstName": "Ada"}], "user", 42])
    def test_other_shapes_are_malformed(self, payload) -> None:
        result = decode_payload(json.dumps(payload), PayloadKind.PROFILE)
        assert isinstance(result, DecodeFailure)

    def test_looks_like_ledger_requires_objects(self) -> None:
        assert looks_like_ledger([{"reference": "A"}, {"reference": "B"}]) is True
        assert looks_like_ledger([{"reference": "A"}, "junk"]) is False
        assert looks_like_ledger({"reference": "A"}) is False


class TestLedgerDecoding:
    def test_array(self) -> None:
        result = decode_payload(json.dumps(TRANSACTIONS).encode(), PayloadKind.LEDGER)

        assert isinstance(result, LedgerPayload)
        assert result.rerouted is False
        assert result.entries[0]["reference"] == "TX-001"

    def test_amounts_decode_as_decimal(self) -> None:
        result = decode_payload('[{"reference": "A", "amount": 0.1}]', PayloadKind.LEDGER)

        assert isinstance(result, LedgerPayload)
        assert result.entries[0]["amount"] == Decimal("0.1")

    def test_object_is_malformed(self) -> None:
        result = decode_payload(json.dumps({"reference": "A"}), PayloadKind.LEDGER)

        assert isinstance(result, DecodeFailure)
        assert "array" in result.message


class TestLedgerEntryCoercion:
    def test_valid_entry(self) -> None:
        entry = coerce_ledger_entry(
            {"reference": "TX-9", "amount": Decimal("10.5"), "currency": "EUR", "timestamp": "2024-02-01T12:00:00Z"}
        )

        assert entry.reference == "TX-9"
        assert entry.amount == Decimal("10.5")
        assert entry.timestamp == datetime(2024, 2, 1, 12, 0)
        assert entry.timestamp.tzinfo is None
        assert entry.message is None

    def test_offset_timestamp_is_converted_to_utc(self) -> None:
        entry = coerce_ledger_entry({"reference": "T", "amount": 1, "timestamp": "2024-02-01T12:00:00+02:00"})
        assert entry.timestamp == datetime(2024, 2, 1, 10, 0)

    def test_invalid_timestamp(self) -> None:
        with pytest.raises(ValidationError):
            coerce_ledger_entry({"reference": "T", "amount": 1, "timestamp": "yesterday"})

    def test_too_many_decimal_places(self) -> None:
        with pytest.raises(ValidationError):
            coerce_ledger_entry({"reference": "T", "amount": Decimal("1.005"), "timestamp": "2024-01-01T00:00:00"})

    def test_non_object_entry(self) -> None:
        with pytest.raises(ValidationError):
            coerce_ledger_entry("TX-1")


def test_ledger_key_spellings() -> None:
    assert ledger_key({"reference": "A"}) == "A"
    assert ledger_key({"transaction_id": 5}) == "5"
    assert ledger_key({"amount": 1}) is None
    assert ledger_key(["reference"]) is None
