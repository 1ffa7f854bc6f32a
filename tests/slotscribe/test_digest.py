"""
Tests for payload digests, including the cross-implementation fixture.
"""
from __future__ import annotations

from slotscribe.digest import (
    compute_payload_hash,
    digests_equal,
    is_hex_digest,
    sha256_hex,
    to_canonical_bytes,
)
from slotscribe.models import Plan

# Canonical bytes and SHA-256 of the reference transfer payload. Any
# conforming implementation must produce exactly these.
REFERENCE_PAYLOAD = {
    "intent": "x",
    "plan": {"steps": []},
    "toolCalls": [],
    "txSummary": {
        "cluster": "devnet",
        "feePayer": "A",
        "to": "B",
        "lamports": 1000,
        "programIds": ["11111111111111111111111111111111"],
    },
}
REFERENCE_CANONICAL = (
    '{"intent":"x","plan":{"steps":[]},"toolCalls":[],"txSummary":{"cluster":"devnet",'
    '"feePayer":"A","lamports":1000,"programIds":["11111111111111111111111111111111"],"to":"B"}}'
)
REFERENCE_HASH = "ecac4ca7e487afb9e6c933da352fe78234dda83a327396acb462a5e07e2d7ac1"


class TestSha256Hex:
    def test_empty_object(self) -> None:
        assert sha256_hex("{}") == "44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"

    def test_str_and_bytes_agree(self) -> None:
        assert sha256_hex("abc") == sha256_hex(b"abc")

    def test_lowercase_hex(self) -> None:
        digest = sha256_hex(b"abc")
        assert len(digest) == 64
        assert digest == digest.lower()


class TestReferenceFixture:
    def test_canonical_bytes(self) -> None:
        assert to_canonical_bytes(REFERENCE_PAYLOAD) == REFERENCE_CANONICAL.encode("utf-8")

    def test_hash(self) -> None:
        assert compute_payload_hash(REFERENCE_PAYLOAD) == REFERENCE_HASH

    def test_hash_is_stable(self) -> None:
        assert {compute_payload_hash(REFERENCE_PAYLOAD) for _ in range(5)} == {REFERENCE_HASH}


class TestModels:
    def test_model_dumped_by_alias(self) -> None:
        assert to_canonical_bytes(Plan(steps=["a"])) == b'{"steps":["a"]}'


class TestHexHelpers:
    def test_is_hex_digest(self) -> None:
        assert is_hex_digest(REFERENCE_HASH)
        assert is_hex_digest(REFERENCE_HASH.upper())
        assert not is_hex_digest(REFERENCE_HASH[:-1])
        assert not is_hex_digest(REFERENCE_HASH + "0")
        assert not is_hex_digest("g" * 64)
        assert not is_hex_digest(None)

    def test_digests_equal_ignores_case(self) -> None:
        assert digests_equal(REFERENCE_HASH, REFERENCE_HASH.upper())
        assert not digests_equal(REFERENCE_HASH, "0" * 64)
