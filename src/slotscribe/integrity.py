"""
Trace integrity checker.

Local self-consistency of a trace, without consulting the chain:
  - payload and hashedPayload canonicalize to identical bytes
  - payloadHash matches the digest of payload

Pure and side-effect free. Used by the standalone `check` command, by
trace ingestion, and as one step of on-chain verification.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from slotscribe.digest import digests_equal, sha256_hex
from slotscribe.jcs import canonicalize
from slotscribe.models import Trace

# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

E_PAYLOAD_DIVERGED = "payload/hashedPayload mismatch"
E_HASH_MISMATCH = "payloadHash does not match payload"


@dataclass
class IntegrityResult:
    ok: bool
    computed_hash: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok, "computedHash": self.computed_hash}
        if self.error is not None:
            d["error"] = self.error
        return d


def validate_integrity(trace: Union[Trace, Mapping[str, Any]]) -> IntegrityResult:
    if not isinstance(trace, Trace):
        trace = Trace.from_dict(trace)

    payload_canonical = canonicalize(trace.payload)
    computed_hash = sha256_hex(payload_canonical)

    if trace.hashed_payload is not None:
        if canonicalize(trace.hashed_payload) != payload_canonical:
            return IntegrityResult(False, computed_hash, E_PAYLOAD_DIVERGED)

    if not digests_equal(computed_hash, trace.payload_hash):
        return IntegrityResult(False, computed_hash, E_HASH_MISMATCH)

    return IntegrityResult(True, computed_hash)


__all__ = [
    "E_PAYLOAD_DIVERGED",
    "E_HASH_MISMATCH",
    "IntegrityResult",
    "validate_integrity",
]
