"""
Digest helpers for trace payloads.

SHA-256 over canonical JSON is the only hash primitive used anywhere in
SlotScribe. Digests are 64-character lowercase hex strings; comparisons
between digests are case-insensitive.

Usage:
    from slotscribe.digest import compute_payload_hash

    payload_hash = compute_payload_hash(trace.hashed_payload)
"""
from __future__ import annotations

import hashlib
import re
from typing import Any, Union

from slotscribe.jcs import canonicalize

_HEX_DIGEST = re.compile(r"[a-fA-F0-9]{64}")


def sha256_hex(data: Union[bytes, bytearray, memoryview, str]) -> str:
    """Return the lowercase hex SHA-256 of *data* (str is encoded as UTF-8)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(bytes(data)).hexdigest()


def to_canonical_bytes(obj: Any) -> bytes:
    """Canonical JSON bytes for *obj*, dumping pydantic models first."""
    return canonicalize(_prepare_for_canonicalization(obj))


def _prepare_for_canonicalization(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    return obj


def compute_payload_hash(obj: Any) -> str:
    """Hex digest of the canonical form of *obj*."""
    return sha256_hex(to_canonical_bytes(obj))


def is_hex_digest(value: Any) -> bool:
    """True if *value* is a 64-character hex string (either case)."""
    return isinstance(value, str) and _HEX_DIGEST.fullmatch(value) is not None


def digests_equal(a: str, b: str) -> bool:
    return a.lower() == b.lower()


__all__ = [
    "sha256_hex",
    "to_canonical_bytes",
    "compute_payload_hash",
    "is_hex_digest",
    "digests_equal",
]
