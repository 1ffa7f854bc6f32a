"""
SlotScribe trace storage.

Traces are content-addressed: one JSON file per payload hash.
Default location: ~/.slotscribe/traces/

    ~/.slotscribe/traces/<payloadHash>.json

Thread-safe. Writes go to a temporary file first and are moved into place
with os.replace, so readers never see a partially written trace.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from slotscribe.config import default_traces_dir
from slotscribe.digest import is_hex_digest
from slotscribe.errors import StoreError
from slotscribe.models import Trace

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def _normalize_hash(payload_hash: str) -> str:
    if not is_hex_digest(payload_hash):
        raise ValueError(f"Invalid trace hash: {payload_hash!r}")
    return payload_hash.lower()


class TraceStore(abc.ABC):
    """Storage collaborator keyed by payload hash."""

    @abc.abstractmethod
    async def get(self, payload_hash: str) -> Optional[Trace]:
        """Load the trace stored under *payload_hash*, or None."""

    @abc.abstractmethod
    async def put(self, payload_hash: str, trace: Trace) -> None:
        """Store *trace* under *payload_hash*, replacing any previous copy."""

    @abc.abstractmethod
    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Tuple[str, Trace]]:
        """Stored (hash, trace) pairs, most recent first."""

    async def exists(self, payload_hash: str) -> bool:
        return await self.get(payload_hash) is not None


class FileTraceStore(TraceStore):
    """
    Persistent trace storage on the local filesystem.

    The blocking file I/O runs in a worker thread; a reentrant lock keeps
    concurrent writers within one process from interleaving.
    """

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        if base_dir is None:
            base_dir = default_traces_dir()
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()

    def path_for(self, payload_hash: str) -> Path:
        return self.base_dir / f"{_normalize_hash(payload_hash)}.json"

    # -- sync implementations ------------------------------------------------

    def _read(self, path: Path) -> Optional[Trace]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Failed to read {path}: {exc}") from exc
        try:
            return Trace.from_dict(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StoreError(f"Corrupt trace file {path}: {exc}") from exc

    def get_sync(self, payload_hash: str) -> Optional[Trace]:
        path = self.path_for(payload_hash)
        with self._lock:
            return self._read(path)

    def put_sync(self, payload_hash: str, trace: Trace) -> Path:
        path = self.path_for(payload_hash)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        data = json.dumps(trace.to_dict(), indent=2, ensure_ascii=False)
        with self._lock:
            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                tmp.write_text(data + "\n", encoding="utf-8")
                os.replace(tmp, path)
            except OSError as exc:
                tmp.unlink(missing_ok=True)
                raise StoreError(f"Failed to write {path}: {exc}") from exc
        logger.debug("Stored trace %s at %s", payload_hash, path)
        return path

    def list_sync(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Tuple[str, Trace]]:
        if not self.base_dir.exists():
            return []
        with self._lock:
            try:
                files = [
                    p for p in self.base_dir.glob("*.json")
                    if is_hex_digest(p.stem)
                ]
                files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
            except OSError as exc:
                raise StoreError(f"Failed to list {self.base_dir}: {exc}") from exc

            results: List[Tuple[str, Trace]] = []
            for path in files:
                if len(results) >= limit:
                    break
                try:
                    trace = self._read(path)
                except StoreError as exc:
                    logger.warning("Skipping unreadable trace: %s", exc)
                    continue
                if trace is not None:
                    results.append((path.stem.lower(), trace))
            return results

    # -- async interface -----------------------------------------------------

    async def get(self, payload_hash: str) -> Optional[Trace]:
        return await asyncio.to_thread(self.get_sync, payload_hash)

    async def put(self, payload_hash: str, trace: Trace) -> None:
        await asyncio.to_thread(self.put_sync, payload_hash, trace)

    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Tuple[str, Trace]]:
        return await asyncio.to_thread(self.list_sync, limit)


class MemoryTraceStore(TraceStore):
    """In-process store. Insertion order stands in for recency."""

    def __init__(self) -> None:
        self._traces: Dict[str, Trace] = {}

    async def get(self, payload_hash: str) -> Optional[Trace]:
        return self._traces.get(_normalize_hash(payload_hash))

    async def put(self, payload_hash: str, trace: Trace) -> None:
        key = _normalize_hash(payload_hash)
        self._traces.pop(key, None)
        self._traces[key] = trace

    async def list(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Tuple[str, Trace]]:
        items = list(self._traces.items())
        items.reverse()
        return items[:limit]

    def __len__(self) -> int:
        return len(self._traces)


def get_default_store() -> FileTraceStore:
    return FileTraceStore(default_traces_dir())


__all__ = [
    "DEFAULT_LIST_LIMIT",
    "TraceStore",
    "FileTraceStore",
    "MemoryTraceStore",
    "get_default_store",
]
