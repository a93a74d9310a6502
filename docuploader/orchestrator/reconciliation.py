"""
Processing reconciliation loop.

Tracks documents the server is still analysing. The set is persisted per
user on every change so a restarted session picks up where it left off.

States:
    idle     empty set, no timer
    polling  non-empty set, one timer task armed
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

from ..protocols import IAPIClient
from ..services.payload_mapper import UploadPayloadMapper
from ..services.processing_set import ProcessingSetRepository
from ..utils.events import EventEmitter

log = logging.getLogger(__name__)

STATUS_ENDPOINT = "/processing_status"
TRIGGER_ENDPOINT = "/process_uploaded_documents"
DEFAULT_POLL_INTERVAL = 7.0


class ReconcilerState(Enum):
    """State of the reconciliation loop."""
    IDLE = "idle"
    POLLING = "polling"


class ProcessingReconciler:
    """
    Polls the API until every submitted document has finished analysis.

    Usage:
        reconciler = ProcessingReconciler(api_client, ProcessingSetRepository(store, user))
        reconciler.on_batch_complete(lambda context: refresh(context))
        await reconciler.start()            # rehydrate and arm if needed
        await reconciler.submit([101, 102], context="recent")
        ...
        await reconciler.stop()             # owner dismissed; state stays persisted
    """

    def __init__(
        self,
        api_client: IAPIClient,
        repository: ProcessingSetRepository,
        interval: float = DEFAULT_POLL_INTERVAL,
        context: Optional[str] = None,
    ):
        self._api = api_client
        self._repository = repository
        self._interval = interval
        self._context = context
        self._mapper = UploadPayloadMapper()
        self._events = EventEmitter()
        self._docnumbers: FrozenSet[int] = frozenset()
        self._task: Optional[asyncio.Task] = None
        self._ticking = False

    # Event subscription methods
    def on_change(self, callback: Callable[[FrozenSet[int]], None]):
        """Called with the new processing set after every change."""
        self._events.on("change", callback)

    def on_batch_complete(self, callback: Callable[[Optional[str]], None]):
        """Called once when the server reports every document done. Receives the context."""
        self._events.on("batch_complete", callback)

    # State properties
    @property
    def state(self) -> ReconcilerState:
        if self._task is not None and not self._task.done():
            return ReconcilerState.POLLING
        return ReconcilerState.IDLE

    @property
    def processing(self) -> FrozenSet[int]:
        return self._docnumbers

    @property
    def context(self) -> Optional[str]:
        """Section/view that should be refreshed when the batch completes."""
        return self._context

    @context.setter
    def context(self, value: Optional[str]) -> None:
        self._context = value

    def is_processing(self, docnumber: int) -> bool:
        return docnumber in self._docnumbers

    # Lifecycle
    async def start(self) -> None:
        """Rehydrate the persisted set and arm the timer if anything is pending."""
        self._docnumbers = self._repository.load()
        if self._docnumbers:
            log.info(f"Resuming processing check for {len(self._docnumbers)} document(s)")
            await self._events.emit("change", self._docnumbers)
            self._arm()

    async def stop(self) -> None:
        """Tear the timer down. The persisted set is left untouched."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def rearm(self) -> None:
        """Restart the timer for the current set (owner mounted again)."""
        await self.stop()
        if self._docnumbers:
            self._arm()

    async def wait(self) -> None:
        """Block until the current polling loop ends."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    # Operations
    async def submit(self, docnumbers: Iterable[int], context: Optional[str] = None) -> bool:
        """
        Add documents to the set and ask the server to analyse them.

        The set is updated before the request; if the trigger fails the
        submitted numbers are removed again and False is returned.
        """
        submitted = frozenset(int(d) for d in docnumbers if d)
        if not submitted:
            return False
        if context is not None:
            self._context = context

        await self._update(self._docnumbers | submitted)
        self._arm()

        try:
            await self._api.post(TRIGGER_ENDPOINT, json=self._mapper.docnumbers_payload(submitted))
        except Exception as exc:
            log.error(f"Error initiating processing: {exc}")
            await self._update(self._docnumbers - submitted)
            if not self._docnumbers:
                await self.stop()
            return False

        log.info(f"Submitted {len(submitted)} document(s) for processing")
        return True

    async def poll_once(self) -> None:
        """
        One status check.

        Skipped while another check is awaiting its response. A failed
        check leaves the set as it was; the next tick tries again.
        """
        if self._ticking or not self._docnumbers:
            return

        self._ticking = True
        sent = self._docnumbers
        try:
            response = await self._api.post(STATUS_ENDPOINT, json=self._mapper.docnumbers_payload(sent))
            body = response.json()
            still_processing = frozenset(int(d) for d in (body.get("processing") or []))
        except Exception as exc:
            log.warning(f"Error checking processing status: {exc}")
            return
        finally:
            self._ticking = False

        if still_processing == sent:
            return

        # Keep numbers submitted while the request was in flight, drop ones rolled back
        added_meanwhile = self._docnumbers - sent
        removed_meanwhile = sent - self._docnumbers
        updated = (still_processing - removed_meanwhile) | added_meanwhile
        await self._update(updated)

        if not updated:
            log.info("All submitted documents finished processing")
            await self.stop()
            await self._events.emit("batch_complete", self._context)

    # Internals
    def _arm(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        log.debug(f"Polling processing status every {self._interval}s")
        # A completion listener may re-arm with a fresh task; this one then bows out
        while self._docnumbers and self._task is asyncio.current_task():
            await asyncio.sleep(self._interval)
            try:
                await self.poll_once()
            except Exception as e:
                log.error(f"Processing status tick failed: {e}")
        log.debug("Processing poll loop stopped")

    async def _update(self, docnumbers: Iterable[int]) -> None:
        docnumbers = frozenset(docnumbers)
        if docnumbers == self._docnumbers:
            return
        self._docnumbers = docnumbers
        try:
            if docnumbers:
                self._repository.save(docnumbers)
            else:
                self._repository.clear()
        except Exception as e:
            log.error(f"Could not persist processing set: {e}")
        await self._events.emit("change", docnumbers)
