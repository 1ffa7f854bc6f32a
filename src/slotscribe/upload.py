"""
Trace publishing: POST to a SlotScribe service, or save to local disk.

Upload failures are reported in UploadResult, never raised.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import aiohttp

from slotscribe.config import default_base_url, default_traces_dir
from slotscribe.models import Trace

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.8
DEFAULT_RETRY_BACKOFF = 2.0


@dataclass
class UploadResult:
    success: bool
    hash: Optional[str] = None
    message: Optional[str] = None
    viewer_url: Optional[str] = None
    trace_url: Optional[str] = None
    error: Optional[str] = None
    duplicate: bool = False
    status: Optional[int] = None

    @property
    def retryable(self) -> bool:
        """Transport failures and 5xx/429 responses are worth retrying."""
        if self.success:
            return False
        if self.status is None:
            return True
        return self.status >= 500 or self.status == 429


def _trace_dict(trace: Union[Trace, Mapping[str, Any]]) -> Dict[str, Any]:
    return trace.to_dict() if isinstance(trace, Trace) else dict(trace)


async def upload_trace(
    trace: Union[Trace, Mapping[str, Any]],
    *,
    base_url: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    headers: Optional[Mapping[str, str]] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> UploadResult:
    base = (base_url or default_base_url()).rstrip("/")
    owns_session = session is None
    session = session or aiohttp.ClientSession()
    try:
        async with session.post(
            f"{base}/api/trace",
            json=_trace_dict(trace),
            headers=dict(headers or {}),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            try:
                data = await resp.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError):
                data = {}
            if not isinstance(data, dict):
                data = {}
            if resp.status >= 400:
                return UploadResult(
                    success=False,
                    error=data.get("error") or f"HTTP {resp.status}",
                    message=data.get("message"),
                    status=resp.status,
                )
            viewer = data.get("viewerUrl")
            trace_url = data.get("traceUrl")
            return UploadResult(
                success=True,
                hash=data.get("hash"),
                message=data.get("message"),
                viewer_url=f"{base}{viewer}" if viewer else None,
                trace_url=f"{base}{trace_url}" if trace_url else None,
                duplicate=bool(data.get("duplicate") or data.get("updated")),
                status=resp.status,
            )
    except asyncio.TimeoutError:
        return UploadResult(
            success=False,
            error="Upload timeout",
            message=f"Request timed out after {timeout}s",
        )
    except aiohttp.ClientError as exc:
        return UploadResult(success=False, error="Upload failed", message=str(exc))
    finally:
        if owns_session:
            await session.close()


async def upload_trace_reliable(
    trace: Union[Trace, Mapping[str, Any]],
    *,
    retries: int = DEFAULT_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    **kwargs: Any,
) -> UploadResult:
    """upload_trace with exponential backoff on retryable failures.

    *retries* counts attempts after the first one.
    """
    delay = retry_delay
    result = await upload_trace(trace, **kwargs)
    for attempt in range(1, retries + 1):
        if not result.retryable:
            break
        logger.warning(
            "Trace upload failed (%s); retry %d/%d in %.1fs",
            result.error, attempt, retries, delay,
        )
        await asyncio.sleep(delay)
        delay *= retry_backoff
        result = await upload_trace(trace, **kwargs)
    return result


def save_trace_to_file(
    trace: Union[Trace, Mapping[str, Any]],
    directory: Optional[Union[str, Path]] = None,
) -> Path:
    """Write ``<payloadHash>.json`` into *directory* and return its path."""
    data = _trace_dict(trace)
    target = Path(directory) if directory is not None else default_traces_dir()
    target.mkdir(parents=True, exist_ok=True)
    path = target / f"{data['payloadHash']}.json"
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


async def save_trace(
    trace: Union[Trace, Mapping[str, Any]],
    kind: str = "file",
    *,
    directory: Optional[Union[str, Path]] = None,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Save locally (``kind="file"``) or upload (``kind="http"``)."""
    if kind == "file":
        path = await asyncio.to_thread(save_trace_to_file, trace, directory)
        return {"path": path}
    if kind == "http":
        result = await upload_trace(trace, base_url=base_url)
        return {"url": result.trace_url, "result": result}
    raise ValueError(f"Unknown save kind: {kind!r} (expected 'file' or 'http')")


__all__ = [
    "UploadResult",
    "upload_trace",
    "upload_trace_reliable",
    "save_trace_to_file",
    "save_trace",
]
