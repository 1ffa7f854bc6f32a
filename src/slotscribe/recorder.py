"""
Trace recorder.

Accumulates an agent's intent, plan steps, tool-call history and
transaction summary into a payload, then freezes a structural snapshot of
it and computes the payload hash that gets anchored on-chain.

States:
    BUILDING   -> payload is mutable
    FINALIZED  -> hash computed, mutators rejected
    SEALED     -> finalized and on-chain info attached

Usage:
    recorder = TraceRecorder(intent="Pay Bob 0.001 SOL", cluster="devnet")
    recorder.add_plan_steps(["Check balance", "Transfer"])
    balance = await recorder.record_tool_call("get_balance", {"who": "A"}, fetch_balance)
    recorder.set_transfer_tx(fee_payer="A", to="B", lamports=1_000_000)
    payload_hash = recorder.finalize_payload_hash()
    trace = recorder.build_trace()
"""
from __future__ import annotations

import copy
import inspect
import json
import logging
import math
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from slotscribe.digest import sha256_hex
from slotscribe.errors import CanonicalizationError, NotFinalizedError, RecorderStateError
from slotscribe.jcs import canonicalize
from slotscribe.models import (
    Cluster,
    LendingDetails,
    LpDetails,
    MemeCoinDetails,
    NftDetails,
    OnChainInfo,
    StakeDetails,
    SwapDetails,
    Trace,
    TxType,
    WireModel,
    select_version,
)
from slotscribe.config import normalize_cluster

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_OUTPUT_CHARS = 100_000
TRUNCATED_PREVIEW_CHARS = 1000
UNSERIALIZABLE_PREVIEW_CHARS = 500

_LENDING_TYPES = {
    "supply": TxType.LENDING_SUPPLY,
    "borrow": TxType.LENDING_BORROW,
    "repay": TxType.LENDING_REPAY,
    "withdraw": TxType.LENDING_WITHDRAW,
}


class RecorderState(str, Enum):
    BUILDING = "building"
    FINALIZED = "finalized"
    SEALED = "sealed"


def _now_iso() -> str:
    """UTC ISO-8601 timestamp with milliseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _generate_nonce() -> str:
    return f"{uuid.uuid4().hex[:13]}{int(time.time() * 1000):x}"


def _detail_json(detail: Union[WireModel, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(detail, WireModel):
        return detail.to_json()
    return copy.deepcopy(dict(detail))


def _null_non_finite(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Mapping):
        return {k: _null_non_finite(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_null_non_finite(v) for v in value]
    return value


def sanitize_output(output: Any) -> Any:
    """JSON round-trip a tool output so the payload only holds plain JSON.

    NaN and infinities become null, as JSON.stringify renders them.
    Oversized outputs are replaced by a truncated preview; outputs that
    cannot be serialized are replaced by a type/string stand-in.
    """
    try:
        text = json.dumps(
            _null_non_finite(output), ensure_ascii=False, separators=(",", ":"), allow_nan=False,
        )
    except (TypeError, ValueError, RecursionError):
        return {
            "_type": type(output).__name__,
            "_string": str(output)[:UNSERIALIZABLE_PREVIEW_CHARS],
        }
    if len(text) > MAX_OUTPUT_CHARS:
        return {"_truncated": True, "preview": text[:TRUNCATED_PREVIEW_CHARS] + "..."}
    return json.loads(text)


class TraceRecorder:
    """Builds one agent run's trace. Not safe for concurrent mutation."""

    def __init__(
        self,
        intent: str,
        cluster: Union[str, Cluster],
        *,
        nonce: Optional[str] = None,
    ):
        self._created_at = _now_iso()
        self._payload: Dict[str, Any] = {
            "nonce": nonce or _generate_nonce(),
            "intent": intent,
            "plan": {"steps": []},
            "toolCalls": [],
            "txSummary": {
                "cluster": normalize_cluster(cluster).value,
                "feePayer": "",
                "programIds": [],
            },
        }
        self._hashed_payload: Optional[Dict[str, Any]] = None
        self._payload_hash: Optional[str] = None
        self._on_chain: Optional[OnChainInfo] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        if self._payload_hash is None:
            return RecorderState.BUILDING
        if self._on_chain is not None:
            return RecorderState.SEALED
        return RecorderState.FINALIZED

    def _require_building(self, operation: str) -> None:
        if self._payload_hash is not None:
            raise RecorderStateError(
                f"{operation}() is not allowed after finalize_payload_hash(); "
                "the payload hash is already committed"
            )

    @property
    def payload(self) -> Dict[str, Any]:
        """Deep copy of the current payload."""
        return copy.deepcopy(self._payload)

    @property
    def created_at(self) -> str:
        return self._created_at

    # ------------------------------------------------------------------
    # Plan and tool calls
    # ------------------------------------------------------------------

    def add_plan_steps(self, steps: List[str]) -> None:
        self._require_building("add_plan_steps")
        self._payload["plan"]["steps"].extend(str(s) for s in steps)

    async def record_tool_call(
        self,
        name: str,
        input: Any,
        action: Callable[[], Union[Awaitable[T], T]],
    ) -> T:
        """Run *action* and append its record to toolCalls.

        On failure the error is recorded and the original exception is
        re-raised. Records are appended in completion order.

        A call that is still running when the payload hash is finalized is
        not recorded: RecorderStateError is raised when it completes,
        chained to the action's own exception if it failed.
        """
        self._require_building("record_tool_call")
        started_at = _now_iso()
        try:
            result = action()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self._append_tool_call({
                "name": name,
                "input": input,
                "error": str(exc) or type(exc).__name__,
                "startedAt": started_at,
                "endedAt": _now_iso(),
            }, cause=exc)
            logger.debug("Tool call %s failed: %s", name, exc)
            raise
        self._append_tool_call({
            "name": name,
            "input": input,
            "output": sanitize_output(result),
            "startedAt": started_at,
            "endedAt": _now_iso(),
        })
        return result

    def _append_tool_call(self, record: Dict[str, Any], cause: Optional[BaseException] = None) -> None:
        if self._payload_hash is not None:
            logger.warning(
                "Tool call %s completed after finalize_payload_hash(); not recorded",
                record["name"],
            )
            raise RecorderStateError(
                f"tool call {record['name']!r} completed after finalize_payload_hash(); "
                "the payload hash is already committed"
            ) from cause
        self._payload["toolCalls"].append(record)

    def add_audit_step(
        self,
        name: str,
        *,
        details: Optional[str] = None,
        status: str = "success",
        input: Any = None,
        output: Any = None,
    ) -> None:
        """Record a step that was not executed through record_tool_call()."""
        self._require_building("add_audit_step")
        now = _now_iso()
        record: Dict[str, Any] = {
            "name": name,
            "input": input,
            "output": output if output is not None else details,
            "startedAt": now,
            "endedAt": now,
        }
        if status == "error":
            record["error"] = details or "Unknown error"
        self._payload["toolCalls"].append(record)

    # ------------------------------------------------------------------
    # Transaction summary
    # ------------------------------------------------------------------

    def set_tx_summary(self, summary: Optional[Mapping[str, Any]] = None, **fields: Any) -> None:
        """Shallow-merge wire (camelCase) fields into txSummary."""
        self._require_building("set_tx_summary")
        if isinstance(summary, WireModel):
            summary = summary.to_json()
        merged = dict(summary or {})
        merged.update(fields)
        if "cluster" in merged:
            merged["cluster"] = normalize_cluster(merged["cluster"]).value
        if isinstance(merged.get("type"), TxType):
            merged["type"] = merged["type"].value
        self._payload["txSummary"] = {**self._payload["txSummary"], **copy.deepcopy(merged)}

    def _set_typed(
        self,
        tx_type: TxType,
        fee_payer: str,
        program_ids: Optional[List[str]],
        **details: Any,
    ) -> None:
        self._require_building(f"set_{tx_type.value}_tx")
        self._payload["txSummary"] = {
            **self._payload["txSummary"],
            "type": tx_type.value,
            "feePayer": fee_payer,
            **details,
            "programIds": list(program_ids or []),
        }

    def set_transfer_tx(
        self,
        fee_payer: str,
        to: str,
        lamports: int,
        program_ids: Optional[List[str]] = None,
    ) -> None:
        self._set_typed(TxType.TRANSFER, fee_payer, program_ids, to=to, lamports=lamports)

    def set_swap_tx(self, fee_payer: str, swap: Union[SwapDetails, Mapping[str, Any]],
                    program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.SWAP, fee_payer, program_ids, swap=_detail_json(swap))

    def set_stake_tx(self, fee_payer: str, stake: Union[StakeDetails, Mapping[str, Any]],
                     program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.STAKE, fee_payer, program_ids, stake=_detail_json(stake))

    def set_unstake_tx(self, fee_payer: str, stake: Union[StakeDetails, Mapping[str, Any]],
                       program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.UNSTAKE, fee_payer, program_ids, stake=_detail_json(stake))

    def set_nft_buy_tx(self, fee_payer: str, nft: Union[NftDetails, Mapping[str, Any]],
                       program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.NFT_BUY, fee_payer, program_ids, nft=_detail_json(nft))

    def set_nft_mint_tx(self, fee_payer: str, nft: Union[NftDetails, Mapping[str, Any]],
                        program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.NFT_MINT, fee_payer, program_ids, nft=_detail_json(nft))

    def set_add_liquidity_tx(self, fee_payer: str, lp: Union[LpDetails, Mapping[str, Any]],
                             program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.LP_ADD, fee_payer, program_ids, lp=_detail_json(lp))

    def set_remove_liquidity_tx(self, fee_payer: str, lp: Union[LpDetails, Mapping[str, Any]],
                                program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.LP_REMOVE, fee_payer, program_ids, lp=_detail_json(lp))

    def set_lending_tx(self, fee_payer: str, lending: Union[LendingDetails, Mapping[str, Any]],
                       program_ids: Optional[List[str]] = None) -> None:
        data = _detail_json(lending)
        tx_type = _LENDING_TYPES.get(data.get("action", ""), TxType.CUSTOM)
        self._set_typed(tx_type, fee_payer, program_ids, lending=data)

    def set_memecoin_tx(self, fee_payer: str, meme: Union[MemeCoinDetails, Mapping[str, Any]],
                        program_ids: Optional[List[str]] = None) -> None:
        data = _detail_json(meme)
        tx_type = TxType.SWAP if data.get("action") in ("buy", "sell") else TxType.TOKEN_MINT
        self._set_typed(tx_type, fee_payer, program_ids, meme=data)

    def set_custom_tx(self, fee_payer: str, custom: Mapping[str, Any],
                      program_ids: Optional[List[str]] = None) -> None:
        self._set_typed(TxType.CUSTOM, fee_payer, program_ids, custom=_detail_json(custom))

    # ------------------------------------------------------------------
    # Hashing and trace construction
    # ------------------------------------------------------------------

    def finalize_payload_hash(self) -> str:
        """Snapshot the payload, hash its canonical form and return the digest.

        Calling it again recomputes over the (unchanged) payload and returns
        the same digest.
        """
        try:
            snapshot = json.loads(json.dumps(self._payload, allow_nan=False))
        except (TypeError, ValueError) as exc:
            raise CanonicalizationError(f"Payload is not JSON-serializable: {exc}") from exc
        canonical = canonicalize(snapshot)
        self._hashed_payload = snapshot
        self._payload_hash = sha256_hex(canonical)
        logger.debug("Finalized payload hash %s", self._payload_hash)
        return self._payload_hash

    def get_payload_hash(self) -> Optional[str]:
        return self._payload_hash

    def attach_on_chain(self, signature: str, **info: Any) -> None:
        """Attach (or replace) on-chain info: slot, status, memo."""
        self._on_chain = OnChainInfo(signature=signature, **info)

    @property
    def on_chain(self) -> Optional[OnChainInfo]:
        return self._on_chain

    def build_trace(self) -> Trace:
        if self._payload_hash is None or self._hashed_payload is None:
            raise NotFinalizedError(
                "payloadHash not finalized. Call finalize_payload_hash() first."
            )
        return Trace(
            version=select_version(self._payload["txSummary"]).value,
            created_at=self._created_at,
            payload=copy.deepcopy(self._payload),
            hashed_payload=copy.deepcopy(self._hashed_payload),
            payload_hash=self._payload_hash,
            on_chain=self._on_chain,
        )


__all__ = [
    "RecorderState",
    "TraceRecorder",
    "sanitize_output",
    "MAX_OUTPUT_CHARS",
]
