"""Tests for proposal and account models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import (
    ZERO_ADDRESS,
    SafeTransaction,
    SignedTransaction,
    parse_account,
)
from tests.helpers import RECIPIENT, SAFE_ADDRESS, make_proposal


class TestSafeTransaction:
    """Tests for SafeTransaction parsing and serialization."""

    def test_wire_aliases_round_trip(self) -> None:
        proposal = make_proposal(5)
        wire = proposal.to_wire()

        assert wire["_nonce"] == 5
        assert wire["safeTxGas"] == "0"
        assert wire["value"] == "1000"
        assert wire["gasToken"] == ZERO_ADDRESS
        assert SafeTransaction.model_validate(wire) == proposal

    def test_numeric_strings_and_hex_are_normalized(self) -> None:
        proposal = make_proposal("7", value="0x10", safeTxGas=21000)
        assert proposal.nonce == 7
        assert proposal.value == 16
        assert proposal.safe_tx_gas == 21000

    def test_addresses_are_checksummed(self) -> None:
        proposal = make_proposal(0, to=RECIPIENT.lower())
        assert proposal.to == RECIPIENT

    def test_data_is_lowercased(self) -> None:
        proposal = make_proposal(0, data="0xA9059CBB")
        assert proposal.data == "0xa9059cbb"
        assert proposal.data_bytes == bytes.fromhex("a9059cbb")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"to": "0x1234"},
            {"data": "a9059cbb"},
            {"data": "0xabc"},
            {"operation": 2},
            {"value": "-1"},
            {"value": True},
            {"_nonce": "five"},
        ],
    )
    def test_rejects_malformed_fields(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            make_proposal(0, **overrides)

    def test_structural_equality_ignores_input_encoding(self) -> None:
        assert make_proposal(3, value="1000") == make_proposal(3, value=1000)
        assert make_proposal(3) != make_proposal(4)


class TestSignedTransaction:
    """Tests for the stage request body."""

    def test_requires_at_least_one_signature(self) -> None:
        with pytest.raises(ValidationError):
            SignedTransaction.model_validate({"txn": make_proposal(0).to_wire(), "sigs": []})

    def test_parses_nested_proposal(self) -> None:
        body = {"txn": make_proposal(2).to_wire(), "sigs": ["0xabc"]}
        signed = SignedTransaction.model_validate(body)
        assert signed.txn.nonce == 2
        assert signed.sigs == ["0xabc"]


class TestParseAccount:
    """Tests for account identity validation."""

    def test_accepts_string_chain_id(self) -> None:
        account = parse_account("137", SAFE_ADDRESS)
        assert account.chain_id == 137
        assert account.key == (137, SAFE_ADDRESS.lower())

    def test_namespace_key_ignores_address_case(self) -> None:
        lower = parse_account(1, SAFE_ADDRESS)
        upper = parse_account(1, SAFE_ADDRESS.upper().replace("0X", "0x"))
        assert lower.key == upper.key

    @pytest.mark.parametrize(
        ("chain_id", "address"),
        [
            (0, SAFE_ADDRESS),
            (-1, SAFE_ADDRESS),
            ("abc", SAFE_ADDRESS),
            ("1.5", SAFE_ADDRESS),
            (True, SAFE_ADDRESS),
            (1, "0x1234"),
            (1, "not-an-address"),
        ],
    )
    def test_rejects_invalid_accounts(self, chain_id, address) -> None:
        with pytest.raises(StageError) as exc:
            parse_account(chain_id, address)
        assert exc.value.reason_code == StageReasonCode.INVALID_ACCOUNT
        assert not exc.value.transient
