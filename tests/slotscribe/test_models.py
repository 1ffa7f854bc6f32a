"""
Tests for the SlotScribe data model.
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from slotscribe.models import (
    TOKENS,
    Cluster,
    OnChainInfo,
    SwapDetails,
    Trace,
    TraceVersion,
    TxSummary,
    TxType,
    VerifyResult,
    select_version,
    token,
)


def _trace_dict(**overrides):
    data = {
        "version": "BBX1",
        "createdAt": "2025-01-01T00:00:00.000Z",
        "payload": {"intent": "x", "plan": {"steps": []}, "toolCalls": [], "txSummary": {"cluster": "devnet"}},
        "payloadHash": "a" * 64,
    }
    data.update(overrides)
    return data


class TestSelectVersion:
    def test_plain_transfer_is_simple(self) -> None:
        assert select_version({"cluster": "devnet", "feePayer": "A", "to": "B", "lamports": 1}) is TraceVersion.SIMPLE

    def test_transfer_type_is_simple(self) -> None:
        assert select_version({"type": "transfer"}) is TraceVersion.SIMPLE

    @pytest.mark.parametrize("tx_type", [t for t in TxType if t is not TxType.TRANSFER])
    def test_complex_types(self, tx_type: TxType) -> None:
        assert select_version({"type": tx_type.value}) is TraceVersion.COMPLEX

    def test_any_detail_object_is_complex(self) -> None:
        # An empty detail object still counts as present.
        assert select_version({"custom": {}}) is TraceVersion.COMPLEX

    def test_null_detail_is_ignored(self) -> None:
        assert select_version({"swap": None}) is TraceVersion.SIMPLE

    def test_accepts_model(self) -> None:
        summary = TxSummary(
            cluster=Cluster.DEVNET,
            swap=SwapDetails(
                protocol="jupiter",
                input_token=TOKENS["SOL"],
                output_token=TOKENS["USDC"],
                input_amount="1",
                output_amount="2",
            ),
        )
        assert summary.detail_kind == "swap"
        assert select_version(summary) is TraceVersion.COMPLEX


class TestWireFormat:
    def test_camel_case_aliases(self) -> None:
        details = SwapDetails(
            protocol="jupiter",
            input_token=TOKENS["SOL"],
            output_token=TOKENS["USDC"],
            input_amount="1",
            output_amount="2",
            slippage_bps=50,
        )
        data = details.to_json()
        assert data["inputToken"]["mint"] == TOKENS["SOL"].mint
        assert data["slippageBps"] == 50
        assert "minOutputAmount" not in data

    def test_populate_by_alias(self) -> None:
        info = OnChainInfo.model_validate({"signature": "sig", "slot": 7, "status": "confirmed"})
        assert info.slot == 7
        assert info.to_json() == {"signature": "sig", "slot": 7, "status": "confirmed"}

    def test_token_helper(self) -> None:
        assert token("Mint1", "ABC", 3).to_json() == {"mint": "Mint1", "symbol": "ABC", "decimals": 3}


class TestTrace:
    def test_round_trip_preserves_nulls_in_payload(self) -> None:
        data = _trace_dict()
        data["payload"]["toolCalls"] = [{"name": "t", "input": None, "output": None}]
        trace = Trace.from_dict(data)
        assert trace.to_dict()["payload"] == data["payload"]

    def test_to_dict_keys(self) -> None:
        trace = Trace.from_dict(_trace_dict(onChain={"signature": "sig"}))
        out = trace.to_dict()
        assert list(out) == ["version", "createdAt", "payload", "payloadHash", "onChain"]
        assert out["onChain"] == {"signature": "sig"}

    def test_unknown_fields_kept(self) -> None:
        trace = Trace.from_dict(_trace_dict(viewer="x"))
        assert trace.to_dict()["viewer"] == "x"

    def test_missing_payload_hash_rejected(self) -> None:
        data = _trace_dict()
        del data["payloadHash"]
        with pytest.raises(ValidationError):
            Trace.from_dict(data)

    def test_frozen(self) -> None:
        trace = Trace.from_dict(_trace_dict())
        with pytest.raises(ValidationError):
            trace.version = "BBX2"

    def test_payload_for_hash_prefers_snapshot(self) -> None:
        snapshot = {"intent": "snapshot"}
        trace = Trace.from_dict(_trace_dict(hashedPayload=snapshot))
        assert trace.payload_for_hash == snapshot
        assert Trace.from_dict(_trace_dict()).payload_for_hash["intent"] == "x"

    def test_is_sealed_for(self) -> None:
        trace = Trace.from_dict(_trace_dict(
            onChain={"signature": "sig-1", "slot": 3},
            verifiedResult={"ok": True, "reasons": []},
        ))
        assert trace.is_sealed_for("sig-1")
        assert not trace.is_sealed_for("sig-2")
        assert not trace.is_sealed_for(None)

    def test_failed_result_is_not_sealed(self) -> None:
        trace = Trace.from_dict(_trace_dict(onChain={"signature": "sig-1"})).model_copy(
            update={"verified_result": VerifyResult(ok=False, reasons=["nope"])}
        )
        assert not trace.is_sealed_for("sig-1")

    def test_typed_payload(self) -> None:
        typed = Trace.from_dict(_trace_dict()).typed_payload()
        assert typed.intent == "x"
        assert typed.tx_summary.cluster == "devnet"
