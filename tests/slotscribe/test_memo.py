"""
Tests for the memo codec and transaction memo scanning.
"""
from __future__ import annotations

import base64

import pytest

from slotscribe.errors import AmbiguousMemoError, MemoDecodeError
from slotscribe.memo import (
    MEMO_PROGRAM_ID,
    MEMO_V1_PROGRAM_ID,
    build_memo_instruction,
    decode_memo,
    decode_memo_data,
    encode_memo,
    find_memo_in_transaction,
)

H1 = "ab" * 32
H2 = "cd" * 32


def _tx(instructions=(), inner=(), logs=()):
    return {
        "slot": 1,
        "meta": {
            "fee": 5000,
            "innerInstructions": [{"index": 0, "instructions": list(inner)}] if inner else [],
            "logMessages": list(logs),
        },
        "transaction": {"message": {"instructions": list(instructions)}},
    }


def _parsed_memo(text: str) -> dict:
    return {"program": "spl-memo", "programId": MEMO_PROGRAM_ID, "parsed": text}


class TestEncodeDecode:
    def test_encode(self) -> None:
        assert encode_memo(H1) == f"SS1 payload={H1}"

    def test_encode_lowercases(self) -> None:
        assert encode_memo(H1.upper()) == f"SS1 payload={H1}"

    @pytest.mark.parametrize("bad", ["", "abc", "z" * 64, H1 + "0"])
    def test_encode_rejects_non_digest(self, bad: str) -> None:
        with pytest.raises(ValueError):
            encode_memo(bad)

    def test_round_trip(self) -> None:
        for h in (H1, H2, H1.upper(), "0" * 64):
            assert decode_memo(encode_memo(h)).payload_hash == h.lower()

    def test_legacy_tag(self) -> None:
        assert decode_memo(f"BBX1 payload={H2}").payload_hash == H2

    def test_surrounding_whitespace(self) -> None:
        decoded = decode_memo(f"  SS1 payload={H1}\n")
        assert decoded.payload_hash == H1
        assert decoded.raw == f"SS1 payload={H1}"

    def test_garbage_is_soft_miss(self) -> None:
        decoded = decode_memo("garbage")
        assert decoded.raw == "garbage"
        assert decoded.payload_hash is None

    @pytest.mark.parametrize("text", [
        f"SS2 payload={H1}",
        f"SS1 payload={H1[:-1]}",
        f"SS1 payload={H1} trailing",
        f"prefix SS1 payload={H1}",
    ])
    def test_near_misses(self, text: str) -> None:
        assert decode_memo(text).payload_hash is None

    def test_build_instruction(self) -> None:
        ix = build_memo_instruction(H1)
        assert ix.program_id == MEMO_PROGRAM_ID
        assert ix.data == f"SS1 payload={H1}".encode("utf-8")
        assert ix.keys == ()


class TestDecodeMemoData:
    def test_base64(self) -> None:
        encoded = base64.b64encode(f"SS1 payload={H1}".encode()).decode()
        assert decode_memo_data(encoded) == f"SS1 payload={H1}"

    def test_plain_text_fallback(self) -> None:
        assert decode_memo_data("hello world!") == "hello world!"

    def test_nothing_applies(self) -> None:
        with pytest.raises(MemoDecodeError):
            decode_memo_data("bad\x00data")


class TestFindMemo:
    def test_no_meta(self) -> None:
        assert find_memo_in_transaction({"transaction": {}}) is None
        assert find_memo_in_transaction(None) is None

    def test_parsed_top_level(self) -> None:
        tx = _tx([_parsed_memo(f"SS1 payload={H1}")])
        assert find_memo_in_transaction(tx) == f"SS1 payload={H1}"

    def test_v1_program_with_raw_data(self) -> None:
        data = base64.b64encode(f"SS1 payload={H1}".encode()).decode()
        tx = _tx([{"programId": MEMO_V1_PROGRAM_ID, "data": data}])
        assert find_memo_in_transaction(tx) == f"SS1 payload={H1}"

    def test_inner_instruction(self) -> None:
        tx = _tx(inner=[_parsed_memo(f"BBX1 payload={H1}")])
        assert find_memo_in_transaction(tx) == f"BBX1 payload={H1}"

    def test_tagged_memo_preferred(self) -> None:
        tx = _tx([_parsed_memo("gm"), _parsed_memo(f"SS1 payload={H1}")])
        assert find_memo_in_transaction(tx) == f"SS1 payload={H1}"

    def test_first_untagged_memo_returned(self) -> None:
        tx = _tx([_parsed_memo("gm"), _parsed_memo("gn")])
        assert find_memo_in_transaction(tx) == "gm"

    def test_log_fallback(self) -> None:
        tx = _tx(logs=[
            "Program MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr invoke [1]",
            f'Program log: Memo (len 76): "SS1 payload={H2}"',
        ])
        assert find_memo_in_transaction(tx) == f"SS1 payload={H2}"

    def test_no_memo(self) -> None:
        tx = _tx([{"program": "system", "programId": "11111111111111111111111111111111", "parsed": {}}])
        assert find_memo_in_transaction(tx) is None

    def test_duplicate_same_hash_is_fine(self) -> None:
        tx = _tx([_parsed_memo(f"SS1 payload={H1}")], inner=[_parsed_memo(f"BBX1 payload={H1}")])
        assert find_memo_in_transaction(tx) == f"SS1 payload={H1}"

    def test_conflicting_hashes_are_ambiguous(self) -> None:
        tx = _tx([_parsed_memo(f"SS1 payload={H1}"), _parsed_memo(f"BBX1 payload={H2}")])
        with pytest.raises(AmbiguousMemoError) as exc_info:
            find_memo_in_transaction(tx)
        assert exc_info.value.hashes == [H1, H2]
