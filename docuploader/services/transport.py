"""
Upload Transport - Single Responsibility: move one queued file to the API.

Drives one item through pending -> uploading -> success | error and never
raises for transfer problems: every failure ends as the item's error.
"""
import logging
from typing import Awaitable, Callable, Optional

from ..models import TransferOutcome, UploadStatus, UploadableItem
from ..protocols import IAPIClient
from ..upload_queue import InvalidTransitionError, UploadQueue
from .payload_mapper import UploadPayloadMapper

logger = logging.getLogger(__name__)

UPLOAD_ENDPOINT = "/upload_document"

NETWORK_ERROR = "Network error during upload."
PARSE_ERROR = "Failed to parse server response."
GENERIC_ERROR = "Upload failed."

ProgressListener = Callable[[UploadableItem, int, int], Awaitable[None]]


class UploadTransport:
    """
    Uploads single queue items and writes every state change back to the queue.

    Usage:
        transport = UploadTransport(api_client, queue)
        outcome = await transport.upload(item.id, parent_id="42")
    """

    def __init__(self, api_client: IAPIClient, queue: UploadQueue):
        self._api = api_client
        self._queue = queue
        self._mapper = UploadPayloadMapper()

    async def upload(
        self,
        item_id: str,
        parent_id: Optional[str] = None,
        event_id: Optional[int] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> TransferOutcome:
        item = self._queue.get(item_id)
        if item.status != UploadStatus.PENDING:
            raise InvalidTransitionError(f"{item_id} is {item.status.value}, expected pending")

        item = self._queue.transition(item_id, UploadStatus.UPLOADING, progress=0)
        form = self._mapper.upload_form(item, parent_id=parent_id, event_id=event_id)
        last_percent = 0

        async def report(sent: int, total: int) -> None:
            nonlocal last_percent
            if total <= 0:
                return
            percent = min(100, round(sent * 100 / total))
            if percent <= last_percent:
                return
            last_percent = percent
            updated = self._write(item_id, UploadStatus.UPLOADING, progress=percent)
            if updated is not None and on_progress:
                await on_progress(updated, sent, total)

        try:
            response = await self._api.upload(
                UPLOAD_ENDPOINT,
                data=form,
                file_path=item.file.path,
                filename=item.file.name,
                progress_callback=report,
            )
        except Exception as exc:
            logger.warning(f"Upload of {item.file.name} failed: {exc}")
            return self._fail(item, NETWORK_ERROR)

        return self._settle(item, response)

    def _settle(self, item: UploadableItem, response) -> TransferOutcome:
        status_code = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None

        if not 200 <= status_code < 300:
            message = self._mapper.error_message(body) or f"Server error: {status_code}"
            return self._fail(item, message)

        if not isinstance(body, dict):
            return self._fail(item, PARSE_ERROR)

        if not body.get("success"):
            return self._fail(item, self._mapper.error_message(body) or GENERIC_ERROR)

        docnumber = body.get("docnumber")
        try:
            docnumber = int(docnumber) if docnumber is not None else None
        except (TypeError, ValueError):
            docnumber = None

        self._write(item.id, UploadStatus.SUCCESS, progress=100, docnumber=docnumber)
        logger.info(f"Uploaded {item.file.name} as document {docnumber}")
        return TransferOutcome.ok(item.id, item.file.name, docnumber)

    def _fail(self, item: UploadableItem, message: str) -> TransferOutcome:
        self._write(item.id, UploadStatus.ERROR, error=message)
        logger.info(f"Upload of {item.file.name} ended in error: {message}")
        return TransferOutcome.fail(item.id, item.file.name, message)

    def _write(self, item_id: str, status: UploadStatus, **fields) -> Optional[UploadableItem]:
        """Record a state change; a no-op once the item has been discarded."""
        if self._queue.find(item_id) is None:
            logger.debug(f"{item_id} left the queue mid-upload; not recording {status.value}")
            return None
        return self._queue.transition(item_id, status, **fields)
