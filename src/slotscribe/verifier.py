"""
On-chain verification of stored traces.

Given a transaction signature (and optionally the trace hash), fetch the
transaction, extract the memo commitment, load the trace it points at and
recompute its digest. Every "not verified" outcome is returned as a
VerifyResult with reasons; only transport and storage failures raise
(as InternalError subclasses).

A successful result is sealed back into the stored trace, keyed on the
(hash, signature) pair, so repeating the same verification costs no
chain calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from slotscribe.chain import ChainClient, SolanaRpcClient, summarize_transaction
from slotscribe.config import normalize_cluster
from slotscribe.digest import compute_payload_hash, digests_equal, is_hex_digest
from slotscribe.errors import AmbiguousMemoError
from slotscribe.integrity import validate_integrity
from slotscribe.memo import TAG_CURRENT, decode_memo, find_memo_in_transaction
from slotscribe.models import Cluster, OnChainInfo, ParsedTxSummary, Trace, VerifyResult
from slotscribe.store import TraceStore

logger = logging.getLogger(__name__)

R_TX_NOT_FOUND = "Transaction not found on chain"
R_NO_MEMO = "No memo found in transaction"

ClientFactory = Callable[[Cluster, Optional[str]], ChainClient]


@dataclass
class VerifyRequest:
    """Verification target. At least one of signature/hash is required.

    Raises InvalidClusterError for an unknown cluster and ValueError for a
    missing target or a malformed hash.
    """

    cluster: Union[str, Cluster] = Cluster.MAINNET
    signature: Optional[str] = None
    hash: Optional[str] = None
    rpc_url: Optional[str] = None

    def __post_init__(self) -> None:
        self.cluster = normalize_cluster(self.cluster)
        self.signature = (self.signature or "").strip() or None
        self.hash = (self.hash or "").strip() or None
        self.rpc_url = (self.rpc_url or "").strip() or None
        if self.signature is None and self.hash is None:
            raise ValueError("at least one of signature or hash is required")
        if self.hash is not None:
            if not is_hex_digest(self.hash):
                raise ValueError(f"hash must be 64 hex characters, got {self.hash!r}")
            self.hash = self.hash.lower()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerifyRequest":
        """Build from a camelCase (or snake_case) request body."""
        return cls(
            cluster=data.get("cluster", Cluster.MAINNET),
            signature=data.get("signature"),
            hash=data.get("hash"),
            rpc_url=data.get("rpcUrl", data.get("rpc_url")),
        )


@dataclass
class VerifyResponse:
    result: VerifyResult
    trace: Optional[Trace] = None
    tx_summary: Optional[ParsedTxSummary] = None
    memo_raw: Optional[str] = None
    on_chain_hash: Optional[str] = None
    slot: Optional[int] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.result.ok

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"result": self.result.to_json()}
        if self.trace is not None:
            d["trace"] = self.trace.to_dict()
        if self.tx_summary is not None:
            d["txSummary"] = self.tx_summary.to_json()
        if self.memo_raw is not None:
            d["memoRaw"] = self.memo_raw
        if self.on_chain_hash is not None:
            d["onChainHash"] = self.on_chain_hash
        if self.slot is not None:
            d["slot"] = self.slot
        return d


def _failure(*reasons: str, expected_hash: Optional[str] = None) -> VerifyResult:
    return VerifyResult(ok=False, expected_hash=expected_hash, reasons=list(reasons))


def _cached_response(trace: Trace) -> VerifyResponse:
    return VerifyResponse(
        result=trace.verified_result,
        trace=trace,
        tx_summary=trace.cached_tx_summary,
        on_chain_hash=trace.payload_hash,
        slot=trace.on_chain.slot if trace.on_chain else None,
        cached=True,
    )


class Verifier:
    """Cross-checks stored traces against on-chain memo commitments."""

    def __init__(self, store: TraceStore, client_factory: ClientFactory = SolanaRpcClient):
        self.store = store
        self.client_factory = client_factory

    async def verify(self, request: Union[VerifyRequest, Mapping[str, Any]]) -> VerifyResponse:
        if not isinstance(request, VerifyRequest):
            request = VerifyRequest.from_dict(request)

        signature = request.signature
        stored: Optional[Trace] = None

        if request.hash:
            stored = await self.store.get(request.hash)
            if signature is None and stored is not None and stored.on_chain is not None:
                signature = stored.on_chain.signature
            if stored is not None and stored.is_sealed_for(signature):
                logger.info("Cache hit for %s (signature %s)", request.hash, signature)
                return _cached_response(stored)

        if signature is None:
            return VerifyResponse(result=_failure(R_TX_NOT_FOUND))

        client = self.client_factory(request.cluster, request.rpc_url)
        parsed_tx = await client.get_parsed_transaction(signature)
        if not parsed_tx:
            return VerifyResponse(result=_failure(R_TX_NOT_FOUND))
        slot = parsed_tx.get("slot")

        try:
            memo_text = find_memo_in_transaction(parsed_tx)
        except AmbiguousMemoError as exc:
            return VerifyResponse(result=_failure(str(exc)), slot=slot)
        if memo_text is None:
            return VerifyResponse(result=_failure(R_NO_MEMO), slot=slot)

        decoded = decode_memo(memo_text)
        if decoded.payload_hash is None:
            return VerifyResponse(
                result=_failure(
                    f'Invalid memo format. Expected "{TAG_CURRENT} payload=<hash>", got: "{decoded.raw}"'
                ),
                memo_raw=decoded.raw,
                slot=slot,
            )
        on_chain_hash = decoded.payload_hash

        hash_to_use = request.hash or on_chain_hash
        trace = stored
        if not request.hash:
            logger.debug("Loading trace %s", hash_to_use)
            trace = await self.store.get(hash_to_use)
        if trace is None:
            logger.warning("Trace not found in store for hash %s", hash_to_use)
            return VerifyResponse(
                result=_failure(
                    f"Trace file not found for hash: {hash_to_use}. "
                    "The agent may not have uploaded the trace.",
                    expected_hash=on_chain_hash,
                ),
                memo_raw=decoded.raw,
                on_chain_hash=on_chain_hash,
                slot=slot,
            )

        if trace.is_sealed_for(signature):
            logger.info("Cache hit for %s after lookup (signature %s)", hash_to_use, signature)
            return _cached_response(trace)

        reasons = []
        integrity = validate_integrity(trace)
        if not integrity.ok:
            reasons.append(f"Trace integrity invalid: {integrity.error}")

        computed_hash = compute_payload_hash(trace.payload_for_hash)
        hash_match = digests_equal(computed_hash, on_chain_hash)
        if not hash_match:
            reasons.append(f"Hash mismatch: on-chain={on_chain_hash}, computed={computed_hash}")

        tx_summary = summarize_transaction(parsed_tx)
        claimed = trace.payload.get("txSummary") or {}
        claimed_to = claimed.get("to")
        if claimed_to is not None and tx_summary.to is not None and claimed_to != tx_summary.to:
            reasons.append(f"To address mismatch: trace={claimed_to}, chain={tx_summary.to}")
        claimed_lamports = claimed.get("lamports")
        if (
            claimed_lamports is not None
            and tx_summary.lamports is not None
            and claimed_lamports != tx_summary.lamports
        ):
            reasons.append(f"Lamports mismatch: trace={claimed_lamports}, chain={tx_summary.lamports}")

        result = VerifyResult(
            ok=hash_match and not reasons,
            expected_hash=on_chain_hash,
            computed_hash=computed_hash,
            reasons=reasons,
        )

        if result.ok:
            logger.info("Verified %s against %s; sealing result", hash_to_use, signature)
            await self.store.put(hash_to_use, self._seal(trace, result, tx_summary, signature, slot))
        else:
            logger.info("Verification of %s failed: %s", hash_to_use, "; ".join(reasons))

        return VerifyResponse(
            result=result,
            trace=trace,
            tx_summary=tx_summary,
            memo_raw=decoded.raw,
            on_chain_hash=on_chain_hash,
            slot=slot,
        )

    @staticmethod
    def _seal(
        trace: Trace,
        result: VerifyResult,
        tx_summary: ParsedTxSummary,
        signature: str,
        slot: Optional[int],
    ) -> Trace:
        if trace.on_chain is not None:
            on_chain = trace.on_chain.model_copy(update={"signature": signature, "slot": slot})
        else:
            on_chain = OnChainInfo(signature=signature, slot=slot)
        return trace.model_copy(update={
            "verified_result": result,
            "cached_tx_summary": tx_summary,
            "on_chain": on_chain,
        })


async def verify_transaction(
    store: TraceStore,
    cluster: Union[str, Cluster],
    signature: Optional[str] = None,
    hash: Optional[str] = None,
    rpc_url: Optional[str] = None,
) -> VerifyResponse:
    """Convenience wrapper around Verifier(store).verify()."""
    request = VerifyRequest(cluster=cluster, signature=signature, hash=hash, rpc_url=rpc_url)
    return await Verifier(store).verify(request)


__all__ = [
    "R_TX_NOT_FOUND",
    "R_NO_MEMO",
    "VerifyRequest",
    "VerifyResponse",
    "Verifier",
    "verify_transaction",
]
