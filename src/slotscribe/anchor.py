"""
Anchoring helpers: send a transaction that carries the trace's memo
commitment, then confirm and publish the trace in the background.

``AnchoringConnection`` wraps any connection object that provides
``send_transaction`` and ``confirm_transaction`` coroutines. Memo injection
only happens through ``send_anchored``; the plain ``send_transaction`` is
passed through unchanged. Transaction types are opaque here: the caller
supplies ``attach_memo(transaction, memo_instruction)``.

Background follow-ups are asyncio tasks. Their failures are logged, never
raised to the code that sent the transaction.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Set

from slotscribe.memo import MEMO_PROGRAM_ID, MemoInstruction, build_memo_instruction
from slotscribe.models import OnChainStatus, Trace
from slotscribe.recorder import RecorderState, TraceRecorder
from slotscribe.store import TraceStore
from slotscribe.upload import upload_trace_reliable

logger = logging.getLogger(__name__)

FOLLOW_UP_UPLOAD_TIMEOUT_SECONDS = 60.0


class Connection(Protocol):
    async def send_transaction(self, transaction: Any, signers: Sequence[Any], options: Any = None) -> str:
        ...

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed") -> Any:
        ...


AttachMemo = Callable[[Any, MemoInstruction], Any]
Publisher = Callable[[Trace], Awaitable[Any]]


class AnchoringConnection:
    """Connection wrapper with an explicit memo-anchoring send path."""

    def __init__(
        self,
        connection: Connection,
        attach_memo: AttachMemo,
        *,
        store: Optional[TraceStore] = None,
        auto_upload: bool = True,
        base_url: Optional[str] = None,
        publisher: Optional[Publisher] = None,
        commitment: str = "confirmed",
    ):
        self.inner = connection
        self.attach_memo = attach_memo
        self.store = store
        self.auto_upload = auto_upload
        self.base_url = base_url
        self.publisher = publisher
        self.commitment = commitment
        self._tasks: Set[asyncio.Task] = set()

    # -- plain delegation ------------------------------------------------------

    async def send_transaction(self, transaction: Any, signers: Sequence[Any], options: Any = None) -> str:
        return await self.inner.send_transaction(transaction, signers, options)

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed") -> Any:
        return await self.inner.confirm_transaction(signature, commitment)

    # -- anchoring ---------------------------------------------------------------

    async def send_anchored(
        self,
        recorder: TraceRecorder,
        transaction: Any,
        signers: Sequence[Any],
        *,
        fee_payer: Optional[str] = None,
        program_ids: Optional[List[str]] = None,
        options: Any = None,
    ) -> str:
        """Finalize *recorder*, add its memo to *transaction* and send it.

        feePayer and programIds are filled in before hashing when the
        recorder has none yet. Returns the signature as soon as the send
        succeeds; confirmation and publishing continue in the background
        (see ``spawn_follow_up``).
        """
        summary = recorder.payload["txSummary"]
        updates = {}
        if not summary.get("feePayer") and fee_payer:
            updates["feePayer"] = fee_payer
        if not summary.get("programIds") and program_ids is not None:
            ids = list(program_ids)
            if MEMO_PROGRAM_ID not in ids:
                ids.append(MEMO_PROGRAM_ID)
            updates["programIds"] = ids
        if updates and recorder.state is RecorderState.BUILDING:
            recorder.set_tx_summary(updates)
        elif updates:
            logger.debug(
                "Recorder already %s; ignoring %s passed to send_anchored",
                recorder.state.value, ", ".join(sorted(updates)),
            )

        payload_hash = recorder.finalize_payload_hash()
        transaction = self.attach_memo(transaction, build_memo_instruction(payload_hash))

        signature = await self.inner.send_transaction(transaction, signers, options)
        logger.info("Sent anchored transaction %s for trace %s", signature, payload_hash)
        self.spawn_follow_up(recorder, signature)
        return signature

    def spawn_follow_up(self, recorder: TraceRecorder, signature: str) -> "asyncio.Task[Optional[Trace]]":
        """Confirm *signature*, attach it to *recorder* and publish, in the background.

        Use this for transactions sent outside ``send_anchored`` that
        already carry the memo (for example versioned transactions).
        """
        task = asyncio.create_task(self._follow_up(recorder, signature))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    sync_on_chain = spawn_follow_up

    async def _follow_up(self, recorder: TraceRecorder, signature: str) -> Optional[Trace]:
        try:
            await self.inner.confirm_transaction(signature, self.commitment)
            recorder.attach_on_chain(signature, status=OnChainStatus.CONFIRMED)
            trace = recorder.build_trace()
            await self._publish(trace)
            return trace
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background follow-up failed for %s", signature)
            return None

    async def _publish(self, trace: Trace) -> None:
        if self.store is not None:
            await self.store.put(trace.payload_hash, trace)
        if self.publisher is not None:
            await self.publisher(trace)
        elif self.auto_upload:
            result = await upload_trace_reliable(
                trace,
                base_url=self.base_url,
                timeout=FOLLOW_UP_UPLOAD_TIMEOUT_SECONDS,
            )
            if not result.success:
                logger.error("Trace upload failed for %s: %s", trace.payload_hash, result.error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_for_follow_ups(self) -> None:
        """Wait for every outstanding follow-up task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = [
    "Connection",
    "AnchoringConnection",
]
