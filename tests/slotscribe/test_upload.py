"""
Tests for trace publishing (HTTP upload with retries, local files).
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiohttp
import pytest

from slotscribe.recorder import TraceRecorder
from slotscribe.upload import (
    UploadResult,
    save_trace,
    save_trace_to_file,
    upload_trace,
    upload_trace_reliable,
)


def _trace():
    rec = TraceRecorder("Pay Bob", "devnet", nonce="n-1")
    rec.set_transfer_tx("A", "B", 1000)
    rec.finalize_payload_hash()
    return rec.build_trace()


class _FakeResponse:
    def __init__(self, status: int, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _FakeSession:
    """Replays queued (status, body) responses or exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        return _FakeResponse(status, body)


class TestUploadTrace:
    @pytest.mark.asyncio
    async def test_created(self) -> None:
        trace = _trace()
        session = _FakeSession((201, {
            "success": True,
            "hash": trace.payload_hash,
            "message": "Trace saved successfully",
            "viewerUrl": f"/verify?hash={trace.payload_hash}",
            "traceUrl": f"/api/trace/{trace.payload_hash}",
        }))
        result = await upload_trace(trace, base_url="https://scribe.test/", session=session)

        assert result.success
        assert result.hash == trace.payload_hash
        assert result.trace_url == f"https://scribe.test/api/trace/{trace.payload_hash}"
        assert result.viewer_url.startswith("https://scribe.test/verify?hash=")
        request = session.requests[0]
        assert request["url"] == "https://scribe.test/api/trace"
        assert request["json"] == trace.to_dict()

    @pytest.mark.asyncio
    async def test_base_url_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("SLOTSCRIBE_BASE_URL", "https://env.test")
        session = _FakeSession((200, {"hash": "h", "duplicate": True}))
        result = await upload_trace(_trace(), session=session)
        assert session.requests[0]["url"] == "https://env.test/api/trace"
        assert result.duplicate

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        session = _FakeSession((400, {"error": "Hash verification failed", "message": "tampered"}))
        result = await upload_trace(_trace(), base_url="https://scribe.test", session=session)
        assert not result.success
        assert result.error == "Hash verification failed"
        assert result.status == 400
        assert not result.retryable

    @pytest.mark.asyncio
    async def test_non_json_error_body(self) -> None:
        session = _FakeSession((502, json.JSONDecodeError("bad", "<html>", 0)))
        result = await upload_trace(_trace(), base_url="https://scribe.test", session=session)
        assert result.error == "HTTP 502"
        assert result.retryable

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        session = _FakeSession(asyncio.TimeoutError())
        result = await upload_trace(_trace(), base_url="https://scribe.test", session=session, timeout=2.0)
        assert result.error == "Upload timeout"
        assert result.retryable

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        session = _FakeSession(aiohttp.ClientConnectionError("refused"))
        result = await upload_trace(_trace(), base_url="https://scribe.test", session=session)
        assert result.error == "Upload failed"
        assert "refused" in result.message


class TestUploadTraceReliable:
    @pytest.mark.asyncio
    async def test_retries_until_success(self, monkeypatch) -> None:
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("slotscribe.upload.asyncio.sleep", fake_sleep)
        session = _FakeSession(
            aiohttp.ClientConnectionError("refused"),
            (503, {"error": "busy"}),
            (201, {"hash": "h"}),
        )
        result = await upload_trace_reliable(_trace(), base_url="https://scribe.test", session=session)

        assert result.success
        assert len(session.requests) == 3
        assert delays == [0.8, 1.6]

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, monkeypatch) -> None:
        async def fake_sleep(seconds):
            return None

        monkeypatch.setattr("slotscribe.upload.asyncio.sleep", fake_sleep)
        session = _FakeSession(*[(500, {"error": "boom"})] * 3)
        result = await upload_trace_reliable(_trace(), retries=2, base_url="https://scribe.test", session=session)
        assert not result.success
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self) -> None:
        session = _FakeSession((400, {"error": "Invalid trace format"}))
        result = await upload_trace_reliable(_trace(), base_url="https://scribe.test", session=session)
        assert result.error == "Invalid trace format"
        assert len(session.requests) == 1


class TestSaveToFile:
    def test_save_trace_to_file(self, tmp_path: Path) -> None:
        trace = _trace()
        path = save_trace_to_file(trace, tmp_path / "traces")
        assert path == tmp_path / "traces" / f"{trace.payload_hash}.json"
        assert json.loads(path.read_text()) == trace.to_dict()

    @pytest.mark.asyncio
    async def test_save_trace_file_kind(self, tmp_path: Path) -> None:
        out = await save_trace(_trace(), "file", directory=tmp_path)
        assert out["path"].exists()

    @pytest.mark.asyncio
    async def test_save_trace_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            await save_trace(_trace(), "ftp")

    def test_retryable_flags(self) -> None:
        assert UploadResult(success=False, status=429).retryable
        assert not UploadResult(success=True, status=200).retryable
