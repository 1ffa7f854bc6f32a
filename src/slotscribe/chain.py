"""
Chain access for verification.

The verifier only needs ``get_parsed_transaction(signature)``; any object
with that coroutine satisfies ``ChainClient``. ``SolanaRpcClient`` is the
default implementation: Solana JSON-RPC ``getTransaction`` with
``jsonParsed`` encoding over aiohttp.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

import aiohttp

from slotscribe.config import get_rpc_url, normalize_cluster
from slotscribe.errors import ChainRpcError
from slotscribe.models import Cluster, ParsedTxSummary

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

DEFAULT_TIMEOUT_SECONDS = 30.0


@runtime_checkable
class ChainClient(Protocol):
    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Return the jsonParsed transaction, or None if the chain does not know it."""
        ...


class SolanaRpcClient:
    """Minimal async Solana JSON-RPC client."""

    def __init__(
        self,
        cluster: Union[str, Cluster],
        rpc_url: Optional[str] = None,
        *,
        commitment: str = "confirmed",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cluster = normalize_cluster(cluster)
        self.rpc_url = get_rpc_url(self.cluster, rpc_url)
        self.commitment = commitment
        self.timeout = timeout
        self._session = session
        self._request_id = 0

    async def _call(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.post(
                self.rpc_url,
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise ChainRpcError(f"{method} failed: HTTP {resp.status}: {text[:200]}")
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise ChainRpcError(f"{method} transport error: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ChainRpcError(f"{method} timed out after {self.timeout}s") from exc
        finally:
            if owns_session:
                await session.close()

        if not isinstance(data, dict):
            raise ChainRpcError(f"{method} returned a non-object response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ChainRpcError(f"{method} RPC error: {message}")
        return data.get("result")

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        logger.info("Fetching transaction %s from %s", signature, self.cluster.value)
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )


def summarize_transaction(parsed_tx: Optional[Mapping[str, Any]]) -> ParsedTxSummary:
    """Fee, invoked programs, and the system transfer (if any) of a parsed transaction."""
    summary = ParsedTxSummary()
    if not parsed_tx or not parsed_tx.get("meta"):
        return summary

    summary.fee = int(parsed_tx["meta"].get("fee") or 0)

    programs: Dict[str, None] = {}
    message = (parsed_tx.get("transaction") or {}).get("message") or {}
    for ix in message.get("instructions") or []:
        program_id = ix.get("programId")
        if program_id:
            programs[str(program_id)] = None
        parsed = ix.get("parsed")
        if ix.get("program") == "system" and isinstance(parsed, dict) and parsed.get("type") == "transfer":
            info = parsed.get("info") or {}
            summary.to = info.get("destination")
            summary.lamports = info.get("lamports")

    summary.programs = list(programs)
    return summary


__all__ = [
    "SYSTEM_PROGRAM_ID",
    "ChainClient",
    "SolanaRpcClient",
    "summarize_transaction",
]
