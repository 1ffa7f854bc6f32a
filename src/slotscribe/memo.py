"""
Memo codec for on-chain payload commitments.

Wire format (UTF-8, bit-exact):

    "<TAG> payload=<64 lowercase hex chars>"

``SS1`` is the current tag and the only one used for new memos. The legacy
``BBX1`` tag is still accepted when decoding.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from slotscribe.digest import is_hex_digest
from slotscribe.errors import AmbiguousMemoError, MemoDecodeError

logger = logging.getLogger(__name__)

TAG_CURRENT = "SS1"
TAG_LEGACY = "BBX1"

MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
MEMO_V1_PROGRAM_ID = "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo"
MEMO_PROGRAM_IDS = frozenset({MEMO_PROGRAM_ID, MEMO_V1_PROGRAM_ID})
MEMO_PROGRAM_NAME = "spl-memo"

_MEMO_PATTERN = re.compile(rf"({TAG_CURRENT}|{TAG_LEGACY})\s+payload=([a-fA-F0-9]{{64}})")


@dataclass(frozen=True)
class DecodedMemo:
    raw: str
    payload_hash: Optional[str] = None


@dataclass(frozen=True)
class MemoInstruction:
    """Chain-agnostic description of a memo instruction."""

    program_id: str
    data: bytes
    keys: tuple = ()


def encode_memo(payload_hash: str) -> str:
    if not is_hex_digest(payload_hash):
        raise ValueError(f"payload hash must be 64 hex characters, got {payload_hash!r}")
    return f"{TAG_CURRENT} payload={payload_hash.lower()}"


def decode_memo(memo_text: str) -> DecodedMemo:
    """Decode memo text. A non-matching memo is a soft miss, never an error."""
    raw = memo_text.strip()
    match = _MEMO_PATTERN.fullmatch(raw)
    if match:
        return DecodedMemo(raw=raw, payload_hash=match.group(2).lower())
    return DecodedMemo(raw=raw)


def build_memo_instruction(payload_hash: str) -> MemoInstruction:
    return MemoInstruction(
        program_id=MEMO_PROGRAM_ID,
        data=encode_memo(payload_hash).encode("utf-8"),
    )


# ---------------------------------------------------------------------------
# Instruction data decoding
# ---------------------------------------------------------------------------

def _decode_base64_utf8(data: str) -> str:
    try:
        raw = base64.b64decode(data, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise MemoDecodeError(f"not base64-encoded UTF-8: {exc}") from exc


def _decode_plain_text(data: str) -> str:
    if not data.isprintable():
        raise MemoDecodeError("not printable text")
    return data


# Tried in order; the first strategy that applies wins.
DECODE_STRATEGIES: Sequence[Callable[[str], str]] = (
    _decode_base64_utf8,
    _decode_plain_text,
)


def decode_memo_data(data: str) -> str:
    """Decode raw memo instruction data.

    Raises MemoDecodeError if no strategy applies.
    """
    failures: List[str] = []
    for strategy in DECODE_STRATEGIES:
        try:
            return strategy(data)
        except MemoDecodeError as exc:
            failures.append(str(exc))
    raise MemoDecodeError("; ".join(failures))


# ---------------------------------------------------------------------------
# Transaction scanning
# ---------------------------------------------------------------------------

def _memo_from_instruction(ix: Mapping[str, Any]) -> Optional[str]:
    program_id = ix.get("programId")
    is_memo = ix.get("program") == MEMO_PROGRAM_NAME or program_id in MEMO_PROGRAM_IDS
    if not is_memo:
        return None
    parsed = ix.get("parsed")
    if isinstance(parsed, str):
        return parsed
    data = ix.get("data")
    if isinstance(data, str) and data:
        try:
            return decode_memo_data(data)
        except MemoDecodeError as exc:
            logger.debug("Skipping undecodable memo data: %s", exc)
    return None


def _iter_instruction_memos(parsed_tx: Mapping[str, Any], meta: Mapping[str, Any]) -> Iterator[str]:
    message = (parsed_tx.get("transaction") or {}).get("message") or {}
    for ix in message.get("instructions") or []:
        memo = _memo_from_instruction(ix)
        if memo is not None:
            yield memo
    for inner in meta.get("innerInstructions") or []:
        for ix in inner.get("instructions") or []:
            memo = _memo_from_instruction(ix)
            if memo is not None:
                yield memo


def find_memo_in_transaction(parsed_tx: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Return the memo text that carries the payload commitment.

    Looks at top-level instructions, then inner (CPI) instructions, then
    log lines. A tag-matching memo wins over any other memo text; otherwise
    the first memo found is returned.

    Raises AmbiguousMemoError if the transaction commits to more than one
    distinct payload hash.
    """
    if not parsed_tx:
        return None
    meta = parsed_tx.get("meta")
    if not meta:
        return None

    memos = list(_iter_instruction_memos(parsed_tx, meta))
    tagged: Dict[str, str] = {}
    for memo in memos:
        match = _MEMO_PATTERN.search(memo)
        if match:
            tagged.setdefault(match.group(2).lower(), memo)
    if len(tagged) > 1:
        raise AmbiguousMemoError(sorted(tagged))
    if tagged:
        return next(iter(tagged.values()))

    for line in meta.get("logMessages") or []:
        if f"{TAG_CURRENT} payload=" in line or f"{TAG_LEGACY} payload=" in line:
            match = _MEMO_PATTERN.search(line)
            if match:
                return match.group(0)

    return memos[0] if memos else None


__all__ = [
    "TAG_CURRENT",
    "TAG_LEGACY",
    "MEMO_PROGRAM_ID",
    "MEMO_V1_PROGRAM_ID",
    "MEMO_PROGRAM_IDS",
    "DecodedMemo",
    "MemoInstruction",
    "encode_memo",
    "decode_memo",
    "build_memo_instruction",
    "decode_memo_data",
    "find_memo_in_transaction",
]
