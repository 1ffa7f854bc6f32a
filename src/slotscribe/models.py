"""
SlotScribe data model.

Wire format is camelCase JSON (field aliases); Python attributes are
snake_case. The payload that gets hashed is kept as plain JSON data on the
Trace so the stored bytes are hashed exactly as written; the models below
give typed views and typed inputs for the recorder setters.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Cluster(str, Enum):
    MAINNET = "mainnet-beta"
    DEVNET = "devnet"
    TESTNET = "testnet"
    LOCALNET = "localnet"


class OnChainStatus(str, Enum):
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    PROCESSED = "processed"
    UNKNOWN = "unknown"


class TxType(str, Enum):
    TRANSFER = "transfer"
    SWAP = "swap"
    STAKE = "stake"
    UNSTAKE = "unstake"
    NFT_MINT = "nft_mint"
    NFT_BUY = "nft_buy"
    NFT_LIST = "nft_list"
    TOKEN_MINT = "token_mint"
    LP_ADD = "lp_add"
    LP_REMOVE = "lp_remove"
    LENDING_SUPPLY = "lending_supply"
    LENDING_BORROW = "lending_borrow"
    LENDING_REPAY = "lending_repay"
    LENDING_WITHDRAW = "lending_withdraw"
    GOVERNANCE_VOTE = "governance_vote"
    CUSTOM = "custom"


class TraceVersion(str, Enum):
    SIMPLE = "BBX1"
    COMPLEX = "BBX2"


# Structured detail objects that may hang off a txSummary.
DETAIL_FIELDS = ("swap", "stake", "nft", "lp", "lending", "meme", "custom")

COMPLEX_TX_TYPES = frozenset(t.value for t in TxType if t is not TxType.TRANSFER)

# Which detail object each transaction kind carries.
TX_TYPE_DETAIL: Dict[TxType, Optional[str]] = {
    TxType.TRANSFER: None,
    TxType.SWAP: "swap",
    TxType.STAKE: "stake",
    TxType.UNSTAKE: "stake",
    TxType.NFT_MINT: "nft",
    TxType.NFT_BUY: "nft",
    TxType.NFT_LIST: "nft",
    TxType.TOKEN_MINT: "meme",
    TxType.LP_ADD: "lp",
    TxType.LP_REMOVE: "lp",
    TxType.LENDING_SUPPLY: "lending",
    TxType.LENDING_BORROW: "lending",
    TxType.LENDING_REPAY: "lending",
    TxType.LENDING_WITHDRAW: "lending",
    TxType.GOVERNANCE_VOTE: "custom",
    TxType.CUSTOM: "custom",
}


class WireModel(BaseModel):
    """Base for camelCase wire models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
    )

    def to_json(self) -> Dict[str, Any]:
        """JSON-ready dict; unset optionals are omitted, not rendered as null."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenInfo(WireModel):
    mint: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = None


class SwapDetails(WireModel):
    protocol: str
    input_token: TokenInfo
    output_token: TokenInfo
    input_amount: str
    output_amount: str
    min_output_amount: Optional[str] = None
    slippage_bps: Optional[int] = None
    route: Optional[List[str]] = None
    price_impact_pct: Optional[float] = None


class StakeDetails(WireModel):
    protocol: str
    amount: str
    validator: Optional[str] = None
    stake_account: Optional[str] = None
    lst_token: Optional[TokenInfo] = None
    lst_amount: Optional[str] = None


class NftDetails(WireModel):
    protocol: str
    mint: str
    name: Optional[str] = None
    collection: Optional[str] = None
    collection_name: Optional[str] = None
    price: Optional[str] = None
    payment_token: Optional[TokenInfo] = None
    seller: Optional[str] = None
    buyer: Optional[str] = None


class LpDetails(WireModel):
    protocol: str
    pool_address: str
    token_a: TokenInfo
    token_b: TokenInfo
    amount_a: str
    amount_b: str
    lp_amount: Optional[str] = None
    lp_mint: Optional[str] = None


class LendingDetails(WireModel):
    protocol: str
    action: str  # supply | borrow | repay | withdraw | liquidate
    token: TokenInfo
    amount: str
    collateral: Optional[TokenInfo] = None
    collateral_amount: Optional[str] = None


class MemeCoinDetails(WireModel):
    protocol: str
    token: TokenInfo
    action: str  # buy | sell | create
    sol_amount: str
    token_amount: str
    bonding_curve: Optional[str] = None
    graduated: Optional[bool] = None


class TxSummary(WireModel):
    cluster: Cluster
    fee_payer: str = ""
    type: Optional[TxType] = None
    to: Optional[str] = None
    lamports: Optional[int] = None
    program_ids: List[str] = Field(default_factory=list)
    recent_blockhash: Optional[str] = None
    swap: Optional[SwapDetails] = None
    stake: Optional[StakeDetails] = None
    nft: Optional[NftDetails] = None
    lp: Optional[LpDetails] = None
    lending: Optional[LendingDetails] = None
    meme: Optional[MemeCoinDetails] = None
    custom: Optional[Dict[str, Any]] = None

    @property
    def detail_kind(self) -> Optional[str]:
        """Name of the first populated detail object, if any."""
        for name in DETAIL_FIELDS:
            if getattr(self, name) is not None:
                return name
        return None


class ToolCall(WireModel):
    name: str
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    started_at: str
    ended_at: str


class Plan(WireModel):
    steps: List[str] = Field(default_factory=list)


class TracePayload(WireModel):
    nonce: Optional[str] = None
    intent: str
    plan: Plan
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tx_summary: TxSummary


class OnChainInfo(WireModel):
    signature: str
    slot: Optional[int] = None
    status: Optional[OnChainStatus] = None
    memo: Optional[str] = None


class VerifyResult(WireModel):
    ok: bool
    expected_hash: Optional[str] = None
    computed_hash: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)


class ParsedTxSummary(WireModel):
    fee: int = 0
    programs: List[str] = Field(default_factory=list)
    to: Optional[str] = None
    lamports: Optional[int] = None
    type: Optional[TxType] = None


class Trace(WireModel):
    """
    Persisted trace artifact.

    ``payload`` and ``hashed_payload`` are raw JSON dicts: they are hashed as
    stored, so they are never coerced through a model. The record is frozen;
    the verifier seals a verified result by producing an updated copy.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
        frozen=True,
    )

    version: str
    created_at: Optional[str] = None
    payload: Dict[str, Any]
    hashed_payload: Optional[Dict[str, Any]] = None
    payload_hash: str
    on_chain: Optional[OnChainInfo] = None
    verified_result: Optional[VerifyResult] = None
    cached_tx_summary: Optional[ParsedTxSummary] = None
    debug: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trace":
        return cls.model_validate(dict(data))

    def to_dict(self) -> Dict[str, Any]:
        """Wire dict. Payload dicts are copied verbatim (nulls preserved)."""
        data: Dict[str, Any] = {"version": self.version}
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        data["payload"] = copy.deepcopy(self.payload)
        if self.hashed_payload is not None:
            data["hashedPayload"] = copy.deepcopy(self.hashed_payload)
        data["payloadHash"] = self.payload_hash
        if self.on_chain is not None:
            data["onChain"] = self.on_chain.to_json()
        if self.verified_result is not None:
            data["verifiedResult"] = self.verified_result.to_json()
        if self.cached_tx_summary is not None:
            data["cachedTxSummary"] = self.cached_tx_summary.to_json()
        if self.debug is not None:
            data["debug"] = copy.deepcopy(self.debug)
        for key, value in (self.model_extra or {}).items():
            data.setdefault(key, copy.deepcopy(value))
        return data

    def typed_payload(self) -> TracePayload:
        """Validated view of the live payload."""
        return TracePayload.model_validate(self.payload)

    @property
    def payload_for_hash(self) -> Dict[str, Any]:
        """The snapshot that was hashed, falling back to payload for older traces."""
        return self.hashed_payload if self.hashed_payload is not None else self.payload

    def is_sealed_for(self, signature: Optional[str]) -> bool:
        """True if a successful verification was sealed for *signature*."""
        return bool(
            signature
            and self.verified_result is not None
            and self.verified_result.ok
            and self.on_chain is not None
            and self.on_chain.signature == signature
        )


def select_version(tx_summary: Union[Mapping[str, Any], TxSummary]) -> TraceVersion:
    """Pick the trace version tag from the shape of a txSummary.

    Any structured detail object, or a complex ``type`` tag, selects the
    complex version; everything else is a simple transfer.
    """
    if isinstance(tx_summary, TxSummary):
        tx_summary = tx_summary.to_json()
    if any(tx_summary.get(name) is not None for name in DETAIL_FIELDS):
        return TraceVersion.COMPLEX
    tx_type = tx_summary.get("type")
    if isinstance(tx_type, TxType):
        tx_type = tx_type.value
    if tx_type in COMPLEX_TX_TYPES:
        return TraceVersion.COMPLEX
    return TraceVersion.SIMPLE


def token(mint: str, symbol: Optional[str] = None, decimals: Optional[int] = None) -> TokenInfo:
    return TokenInfo(mint=mint, symbol=symbol, decimals=decimals)


TOKENS: Dict[str, TokenInfo] = {
    "SOL": TokenInfo(mint="So11111111111111111111111111111111111111112", symbol="SOL", decimals=9),
    "USDC": TokenInfo(mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", symbol="USDC", decimals=6),
    "USDT": TokenInfo(mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", symbol="USDT", decimals=6),
    "BONK": TokenInfo(mint="DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", symbol="BONK", decimals=5),
    "WIF": TokenInfo(mint="EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", symbol="WIF", decimals=6),
    "JUP": TokenInfo(mint="JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", symbol="JUP", decimals=6),
}


__all__ = [
    "Cluster",
    "OnChainStatus",
    "TxType",
    "TraceVersion",
    "DETAIL_FIELDS",
    "COMPLEX_TX_TYPES",
    "TX_TYPE_DETAIL",
    "WireModel",
    "TokenInfo",
    "SwapDetails",
    "StakeDetails",
    "NftDetails",
    "LpDetails",
    "LendingDetails",
    "MemeCoinDetails",
    "TxSummary",
    "ToolCall",
    "Plan",
    "TracePayload",
    "OnChainInfo",
    "VerifyResult",
    "ParsedTxSummary",
    "Trace",
    "select_version",
    "token",
    "TOKENS",
]
