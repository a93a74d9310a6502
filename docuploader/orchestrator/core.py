"""Core orchestrator - coordinates one upload session."""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..models import BatchUploadResult, FileHandle, UploadConfig, UploadableItem
from ..protocols import IKeyValueStore
from ..services.api_client import HTTPAPIClient
from ..services.date_inference import DateTakenResolver
from ..services.processing_set import ProcessingSetRepository
from ..services.state_store import JsonFileStore
from ..services.transport import UploadTransport
from ..upload_queue import UploadQueue
from ..utils.events import EventEmitter
from .batch_upload import BatchUploadCoordinator
from .reconciliation import ProcessingReconciler

logger = logging.getLogger(__name__)

UPLOAD_EVENTS = {"item_start", "item_progress", "item_complete", "item_fail", "finish"}
PROCESSING_EVENTS = {"change", "batch_complete"}


class UploadOrchestrator:
    """
    Orchestrates an upload session using injected services.

    Follows:
    - Dependency Injection (store, transport and resolver injected)
    - Single Responsibility (delegates to queue, coordinator and reconciler)

    Usage:
        async with UploadOrchestrator(api_url, user="alice") as session:
            await session.add_files([Path("IMG_20230415.jpg")])
            result = await session.upload_pending(parent_id="12")
            await session.analyze(context="recent")
            await session.reconciler.wait()
    """

    def __init__(
        self,
        api_url: str,
        user: str,
        config: Optional[UploadConfig] = None,
        store: Optional[IKeyValueStore] = None,
        resolver: Optional[DateTakenResolver] = None,
        api_client: Optional[HTTPAPIClient] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            api_url: Document API URL
            user: Identity the processing set is persisted under
            config: Upload configuration
            store: Durable key-value store (default: JSON file in config.state_dir)
            resolver: Date taken resolver
            api_client: Pre-built API client (default: HTTPAPIClient on api_url)
        """
        self._config = config or UploadConfig()
        self._api_url = api_url
        self._user = user
        self._store = store
        self._resolver = resolver or DateTakenResolver()
        self._api_client = api_client

        self._events = EventEmitter()
        self._queue = UploadQueue()

        # Initialized in __aenter__
        self._transport: Optional[UploadTransport] = None
        self._batch: Optional[BatchUploadCoordinator] = None
        self._reconciler: Optional[ProcessingReconciler] = None

    async def __aenter__(self):
        """Initialize services and start the processing poller."""
        if self._api_client is None:
            self._api_client = HTTPAPIClient(
                self._api_url,
                timeout=self._config.request_timeout,
                max_retries=self._config.max_retries,
            )
        await self._api_client.__aenter__()

        store = self._store or JsonFileStore(self._config.state_path)
        self._transport = UploadTransport(self._api_client, self._queue)
        self._batch = BatchUploadCoordinator(
            self._queue,
            self._transport,
            events=self._events,
            max_parallel=self._config.max_parallel,
        )
        self._reconciler = ProcessingReconciler(
            self._api_client,
            ProcessingSetRepository(store, self._user),
            interval=self._config.poll_interval,
        )
        await self._reconciler.start()
        return self

    async def __aexit__(self, *args):
        """Stop polling and release the HTTP client."""
        if self._reconciler:
            await self._reconciler.stop()
        if self._api_client:
            await self._api_client.__aexit__(*args)

    @property
    def queue(self) -> UploadQueue:
        return self._queue

    @property
    def reconciler(self) -> ProcessingReconciler:
        assert self._reconciler is not None
        return self._reconciler

    def on(self, event_name: str, callback: Callable) -> None:
        """Subscribe to upload events or processing events (change, batch_complete)."""
        if event_name in UPLOAD_EVENTS:
            self._events.on(event_name, callback)
        elif event_name == "change":
            self.reconciler.on_change(callback)
        elif event_name == "batch_complete":
            self.reconciler.on_batch_complete(callback)
        else:
            raise ValueError(f"Unknown event: {event_name}")

    async def add_files(self, paths: Iterable[Path]) -> List[UploadableItem]:
        """Capture files, infer their date taken and append them in selection order."""
        handles = [FileHandle.from_path(p) for p in paths]
        inferences = await asyncio.gather(*(self._resolver.resolve(h) for h in handles))
        items = [self._queue.add_file(h, inf) for h, inf in zip(handles, inferences)]
        logger.info(f"Queued {len(items)} file(s)")
        return items

    def remove(self, item_id: str) -> None:
        self._queue.remove(item_id)

    def rename(self, item_id: str, name: str) -> UploadableItem:
        return self._queue.rename(item_id, name)

    def set_date_taken(self, item_id: str, date: Optional[datetime]) -> UploadableItem:
        return self._queue.set_date_taken(item_id, date)

    def retry(self, item_id: str) -> UploadableItem:
        return self._queue.retry(item_id)

    async def upload_pending(
        self,
        parent_id: Optional[str] = None,
        event_id: Optional[int] = None,
    ) -> BatchUploadResult:
        """Upload every pending item. Returns once all of them are terminal."""
        assert self._batch is not None
        if parent_id is not None and event_id is not None:
            raise ValueError("Upload into a folder or an event, not both")
        return await self._batch.upload(parent_id=parent_id, event_id=event_id)

    async def analyze(self, context: Optional[str] = None) -> bool:
        """Hand successfully uploaded documents to server-side analysis."""
        docnumbers = [i.docnumber for i in self._queue.successful()]
        if not docnumbers:
            return False
        return await self.reconciler.submit(docnumbers, context=context)

    def discard(self) -> None:
        """Close the upload surface: drop queued items. Running uploads are not aborted."""
        self._queue.clear()
