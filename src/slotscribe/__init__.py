"""
SlotScribe: verifiable audit traces for Solana agents.

- Record an agent run (intent, plan, tool calls, transaction summary)
- Commit to it with a SHA-256 digest of its canonical JSON, anchored on-chain in a memo
- Verify a transaction against the stored trace (exit 0/1/2/3: pass / error / tampered / bad input)
"""

__version__ = "0.3.0"

from .digest import compute_payload_hash, sha256_hex
from .errors import InternalError, InvalidClusterError, NotFinalizedError, SlotScribeError
from .integrity import validate_integrity
from .jcs import canonicalize, canonicalize_to_str
from .memo import decode_memo, encode_memo, find_memo_in_transaction
from .models import TOKENS, Cluster, Trace, TxType, token
from .recorder import TraceRecorder
from .store import FileTraceStore, MemoryTraceStore, get_default_store
from .verifier import Verifier, VerifyRequest, VerifyResponse

__all__ = [
    "__version__",
    "canonicalize",
    "canonicalize_to_str",
    "sha256_hex",
    "compute_payload_hash",
    "SlotScribeError",
    "InternalError",
    "InvalidClusterError",
    "NotFinalizedError",
    "validate_integrity",
    "encode_memo",
    "decode_memo",
    "find_memo_in_transaction",
    "Cluster",
    "Trace",
    "TxType",
    "TOKENS",
    "token",
    "TraceRecorder",
    "FileTraceStore",
    "MemoryTraceStore",
    "get_default_store",
    "Verifier",
    "VerifyRequest",
    "VerifyResponse",
]
