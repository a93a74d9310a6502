from typing import List, Optional, Set
import asyncio
import logging
from docuploader.models import BatchUploadResult, TransferOutcome, UploadableItem
from docuploader.services.transport import UploadTransport
from docuploader.upload_queue import UploadQueue
from docuploader.utils.events import EventEmitter, ItemProgress
logger = logging.getLogger(__name__)


class BatchUploadCoordinator:
    """
    Fans the pending part of the queue out to concurrent transports.

    - max_parallel=None: every pending item starts at once
    - max_parallel=N: bounded pool, the rest wait on a semaphore

    Either way the call returns only after every launched item is terminal,
    and one failing item never cancels or blocks the others.
    """

    def __init__(
        self,
        queue: UploadQueue,
        transport: UploadTransport,
        events: Optional[EventEmitter] = None,
        max_parallel: Optional[int] = None,
    ):
        self._queue = queue
        self._transport = transport
        self._events = events or EventEmitter()
        self._semaphore = asyncio.Semaphore(max_parallel) if max_parallel else None
        self._in_flight: Set[str] = set()

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def upload(
        self,
        parent_id: Optional[str] = None,
        event_id: Optional[int] = None,
    ) -> BatchUploadResult:
        """Upload every pending item not already launched; join on all of them."""
        batch = [i for i in self._queue.pending() if i.id not in self._in_flight]
        if not batch:
            return BatchUploadResult.empty()

        # Claimed before any await so a second call cannot pick the same items
        self._in_flight.update(i.id for i in batch)

        logger.info(
            f"Starting upload: {len(batch)} files "
            f"({'unbounded' if self._semaphore is None else 'bounded'} concurrency)"
        )

        tasks = [
            asyncio.create_task(self._upload_one(item, parent_id, event_id))
            for item in batch
        ]

        results: List[TransferOutcome] = []
        for task in asyncio.as_completed(tasks):
            outcome = await task
            results.append(outcome)
            if outcome.success:
                await self._events.emit("item_complete", outcome)
            else:
                await self._events.emit("item_fail", outcome)

        uploaded = sum(1 for r in results if r.success)
        failed = len(results) - uploaded
        logger.info(f"Upload complete: {uploaded} successful, {failed} failed")

        result = BatchUploadResult(
            total=len(batch),
            uploaded=uploaded,
            failed=failed,
            results=tuple(results),
        )
        await self._events.emit("finish", result)
        return result

    async def _upload_one(
        self,
        item: UploadableItem,
        parent_id: Optional[str],
        event_id: Optional[int],
    ) -> TransferOutcome:
        try:
            if self._semaphore is None:
                return await self._run(item, parent_id, event_id)
            async with self._semaphore:
                return await self._run(item, parent_id, event_id)
        finally:
            self._in_flight.discard(item.id)

    async def _run(
        self,
        item: UploadableItem,
        parent_id: Optional[str],
        event_id: Optional[int],
    ) -> TransferOutcome:
        await self._events.emit("item_start", item)
        try:
            return await self._transport.upload(
                item.id,
                parent_id=parent_id,
                event_id=event_id,
                on_progress=self._report_progress,
            )
        except Exception as e:
            # Item was removed or changed under us; report it without touching the others
            logger.warning(f"Could not upload {item.file.name}: {e}")
            return TransferOutcome.fail(item.id, item.file.name, str(e))

    async def _report_progress(self, item: UploadableItem, sent: int, total: int) -> None:
        await self._events.emit(
            "item_progress",
            ItemProgress(
                item_id=item.id,
                filename=item.file.name,
                bytes_sent=sent,
                total_bytes=total,
                percent=item.progress,
            ),
        )
