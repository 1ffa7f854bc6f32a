"""
Exception taxonomy for SlotScribe.

Verification outcomes are NOT exceptions: a trace that fails to verify is
reported through ``VerifyResult.reasons``. The classes here cover
programming errors (fail fast) and infrastructure failures (propagate).
"""
from __future__ import annotations


class SlotScribeError(Exception):
    """Base class for all SlotScribe exceptions."""


class CanonicalizationError(SlotScribeError, ValueError):
    """Value cannot be represented as canonical JSON."""


class NotFinalizedError(SlotScribeError, RuntimeError):
    """build_trace() was called before finalize_payload_hash()."""


class RecorderStateError(SlotScribeError, RuntimeError):
    """Recorder mutation attempted after the payload hash was finalized."""


class InvalidClusterError(SlotScribeError, ValueError):
    """Unknown cluster name."""


class MemoDecodeError(SlotScribeError):
    """A memo data decoding strategy does not apply to the input."""


class AmbiguousMemoError(SlotScribeError):
    """Transaction carries several tag-matching memos with different hashes."""

    def __init__(self, hashes: list[str]):
        self.hashes = hashes
        super().__init__(
            "Ambiguous memo: transaction commits to multiple payload hashes: "
            + ", ".join(hashes)
        )


class InternalError(SlotScribeError):
    """We failed to check (RPC transport, storage I/O), as opposed to a failed check."""


class ChainRpcError(InternalError):
    """Chain RPC transport or protocol failure."""


class StoreError(InternalError):
    """Trace store I/O failure."""


__all__ = [
    "SlotScribeError",
    "CanonicalizationError",
    "NotFinalizedError",
    "RecorderStateError",
    "InvalidClusterError",
    "MemoDecodeError",
    "AmbiguousMemoError",
    "InternalError",
    "ChainRpcError",
    "StoreError",
]
