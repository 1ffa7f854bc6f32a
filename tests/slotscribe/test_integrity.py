"""
Tests for the local trace integrity checker.
"""
from __future__ import annotations

import copy

from slotscribe.digest import compute_payload_hash
from slotscribe.integrity import E_HASH_MISMATCH, E_PAYLOAD_DIVERGED, validate_integrity
from slotscribe.models import Trace
from slotscribe.recorder import TraceRecorder

PAYLOAD = {
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


def _trace(payload=None, hashed_payload=None, payload_hash=None) -> dict:
    payload = copy.deepcopy(payload or PAYLOAD)
    data = {
        "version": "BBX1",
        "payload": payload,
        "payloadHash": payload_hash or compute_payload_hash(PAYLOAD),
    }
    if hashed_payload is not None:
        data["hashedPayload"] = hashed_payload
    return data


class TestValidateIntegrity:
    def test_intact(self) -> None:
        result = validate_integrity(_trace())
        assert result.ok
        assert result.error is None
        assert result.computed_hash == compute_payload_hash(PAYLOAD)

    def test_accepts_trace_model(self) -> None:
        assert validate_integrity(Trace.from_dict(_trace())).ok

    def test_hash_case_insensitive(self) -> None:
        assert validate_integrity(_trace(payload_hash=compute_payload_hash(PAYLOAD).upper())).ok

    def test_tampered_payload(self) -> None:
        tampered = copy.deepcopy(PAYLOAD)
        tampered["txSummary"]["lamports"] = 2000
        result = validate_integrity(_trace(payload=tampered))
        assert not result.ok
        assert result.error == E_HASH_MISMATCH

    def test_payload_diverged_from_snapshot(self) -> None:
        tampered = copy.deepcopy(PAYLOAD)
        tampered["txSummary"]["lamports"] = 2000
        result = validate_integrity(_trace(payload=tampered, hashed_payload=copy.deepcopy(PAYLOAD)))
        assert not result.ok
        assert result.error == E_PAYLOAD_DIVERGED

    def test_snapshot_with_reordered_keys_is_intact(self) -> None:
        reordered = dict(reversed(list(copy.deepcopy(PAYLOAD).items())))
        assert validate_integrity(_trace(hashed_payload=reordered)).ok

    def test_every_field_mutation_detected(self) -> None:
        rec = TraceRecorder("x", "devnet", nonce="n")
        rec.add_plan_steps(["a"])
        rec.set_transfer_tx("A", "B", 1000)
        rec.finalize_payload_hash()
        base = rec.build_trace().to_dict()
        del base["hashedPayload"]

        mutations = [
            ("intent", "y"),
            ("nonce", "m"),
            ("plan", {"steps": ["b"]}),
            ("toolCalls", [{"name": "t"}]),
        ]
        for key, value in mutations:
            data = copy.deepcopy(base)
            data["payload"][key] = value
            assert validate_integrity(data).error == E_HASH_MISMATCH, key

    def test_to_dict(self) -> None:
        result = validate_integrity(_trace(payload_hash="0" * 64))
        assert result.to_dict() == {
            "ok": False,
            "computedHash": compute_payload_hash(PAYLOAD),
            "error": E_HASH_MISMATCH,
        }
