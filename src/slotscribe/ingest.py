"""
Trace upload validation.

Checks a submitted trace document before it is stored:
  1. Shape: schemas/trace.schema.json (version, payload, payloadHash required;
     payloadHash is 64 hex chars)
  2. Tamper check: the digest of hashedPayload (or payload) must equal the
     claimed payloadHash, and payload must match hashedPayload
  3. Dedup: content already stored under that digest is accepted as a
     duplicate and left untouched
  4. Seal fields (verifiedResult, cachedTxSummary) are dropped; only the
     verifier writes them

Schemas are bundled inside the package so they are available in installed
wheels. Validation fails closed if they cannot be loaded.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import referencing
from jsonschema import Draft202012Validator
from pydantic import ValidationError

from slotscribe.digest import compute_payload_hash, digests_equal
from slotscribe.errors import CanonicalizationError
from slotscribe.integrity import validate_integrity
from slotscribe.models import Trace
from slotscribe.store import TraceStore

logger = logging.getLogger(__name__)

_SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

_trace_validator: Optional[Draft202012Validator] = None

E_INVALID_FORMAT = "Invalid trace format"
E_HASH_FAILED = "Hash verification failed"

# Written only by the verifier after a successful on-chain check.
SEAL_FIELDS = frozenset({"verifiedResult", "cachedTxSummary"})


def _load_validator() -> Draft202012Validator:
    global _trace_validator
    if _trace_validator is not None:
        return _trace_validator

    trace_path = _SCHEMA_DIR / "trace.schema.json"
    on_chain_path = _SCHEMA_DIR / "on_chain.schema.json"
    if not trace_path.exists() or not on_chain_path.exists():
        raise FileNotFoundError(
            f"Schema files not found in {_SCHEMA_DIR}. "
            f"Expected trace.schema.json and on_chain.schema.json."
        )

    trace_schema = json.loads(trace_path.read_text())
    on_chain_schema = json.loads(on_chain_path.read_text())

    registry = referencing.Registry().with_resources([
        (trace_schema["$id"], referencing.Resource.from_contents(trace_schema)),
        (on_chain_schema["$id"], referencing.Resource.from_contents(on_chain_schema)),
    ])
    _trace_validator = Draft202012Validator(trace_schema, registry=registry)
    return _trace_validator


def validate_trace_document(data: Any) -> List[str]:
    """Validate a trace document against its JSON schema.

    Returns a list of error messages (empty = valid).
    """
    validator = _load_validator()
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        errors.append(f"{path}: {error.message}")
    return errors


@dataclass
class IngestResult:
    accepted: bool
    status_code: int
    hash: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    duplicate: bool = False
    computed_hash: Optional[str] = None
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"success": self.accepted}
        if self.hash is not None:
            d["hash"] = self.hash
        if self.error is not None:
            d["error"] = self.error
        if self.message is not None:
            d["message"] = self.message
        if self.duplicate:
            d["duplicate"] = True
        if self.computed_hash is not None:
            d["computedHash"] = self.computed_hash
        if self.details:
            d["details"] = list(self.details)
        return d


def check_trace_upload(data: Any) -> IngestResult:
    """Shape and tamper checks only; nothing is stored."""
    errors = validate_trace_document(data)
    if errors:
        received = sorted(data) if isinstance(data, Mapping) else type(data).__name__
        return IngestResult(
            accepted=False,
            status_code=400,
            error=E_INVALID_FORMAT,
            message=f"Required fields: version, payload, payloadHash (received: {received})",
            details=errors,
        )

    claimed = data["payloadHash"].lower()
    to_hash = data.get("hashedPayload")
    if to_hash is None:
        to_hash = data["payload"]
    try:
        computed = compute_payload_hash(to_hash)
    except CanonicalizationError as exc:
        return IngestResult(
            accepted=False, status_code=400, hash=claimed,
            error=E_INVALID_FORMAT, message=str(exc),
        )

    if not digests_equal(computed, claimed):
        return IngestResult(
            accepted=False,
            status_code=400,
            hash=claimed,
            error=E_HASH_FAILED,
            message="Computed hash does not match payloadHash. The trace may be tampered.",
            computed_hash=computed,
        )

    # payload must also canonicalize to the hashed snapshot.
    try:
        integrity = validate_integrity({k: v for k, v in data.items() if k not in SEAL_FIELDS})
    except (ValidationError, CanonicalizationError) as exc:
        return IngestResult(
            accepted=False, status_code=400, hash=claimed,
            error=E_INVALID_FORMAT, message=str(exc),
        )
    if not integrity.ok:
        return IngestResult(
            accepted=False,
            status_code=400,
            hash=claimed,
            error=E_HASH_FAILED,
            message=f"{integrity.error}. The trace may be tampered.",
            computed_hash=integrity.computed_hash,
        )
    return IngestResult(accepted=True, status_code=200, hash=claimed, computed_hash=computed)


async def ingest_trace(store: TraceStore, data: Any) -> IngestResult:
    """Validate an uploaded trace and store it under its payload hash.

    Storage failures propagate as StoreError.
    """
    checked = check_trace_upload(data)
    if not checked.accepted:
        logger.info("Rejected trace upload: %s", checked.error)
        return checked

    payload_hash = checked.hash
    dropped = sorted(SEAL_FIELDS.intersection(data))
    if dropped:
        logger.info("Dropping client-supplied %s from upload %s", ", ".join(dropped), payload_hash)
        data = {k: v for k, v in data.items() if k not in SEAL_FIELDS}
    try:
        trace = Trace.from_dict(data)
    except ValidationError as exc:
        return IngestResult(
            accepted=False, status_code=400, hash=payload_hash,
            error=E_INVALID_FORMAT, message=str(exc),
        )

    if await store.get(payload_hash) is not None:
        logger.info("Trace %s already stored; keeping existing copy", payload_hash)
        return IngestResult(
            accepted=True,
            status_code=200,
            hash=payload_hash,
            duplicate=True,
            message="Trace already exists",
        )

    await store.put(payload_hash, trace)
    logger.info("Stored uploaded trace %s", payload_hash)
    return IngestResult(
        accepted=True,
        status_code=201,
        hash=payload_hash,
        message="Trace saved successfully",
    )


__all__ = [
    "E_INVALID_FORMAT",
    "E_HASH_FAILED",
    "SEAL_FIELDS",
    "IngestResult",
    "validate_trace_document",
    "check_trace_upload",
    "ingest_trace",
]
