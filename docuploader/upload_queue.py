"""
Upload queue store.

Single owner of the ordered collection of upload items. Items are frozen;
every mutation builds a new tuple keyed by item id, so readers only ever
hold snapshots.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import DateInference, FileHandle, UploadStatus, UploadableItem

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.UPLOADING},
    UploadStatus.UPLOADING: {UploadStatus.UPLOADING, UploadStatus.SUCCESS, UploadStatus.ERROR},
    UploadStatus.SUCCESS: set(),
    UploadStatus.ERROR: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when an item is mutated in a state that does not allow it."""


class UploadQueue:
    """
    Ordered, append-only collection of UploadableItem.

    Usage:
        queue = UploadQueue()
        item = queue.add_file(FileHandle.from_path(path), inference)
        queue.rename(item.id, "Holiday")
        queue.transition(item.id, UploadStatus.UPLOADING, progress=0)
    """

    def __init__(self, id_prefix: str = "file"):
        self._items: Tuple[UploadableItem, ...] = ()
        self._counter = 0
        self._id_prefix = id_prefix
        self._listeners: List[Callable[[Tuple[UploadableItem, ...]], None]] = []

    # Reads

    @property
    def items(self) -> Tuple[UploadableItem, ...]:
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> UploadableItem:
        item = self.find(item_id)
        if item is None:
            raise KeyError(item_id)
        return item

    def find(self, item_id: str) -> Optional[UploadableItem]:
        """Like get(), but None for ids that were removed or never added."""
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def pending(self) -> Tuple[UploadableItem, ...]:
        return tuple(i for i in self._items if i.status == UploadStatus.PENDING)

    def successful(self) -> Tuple[UploadableItem, ...]:
        """Uploaded items that carry a server document number."""
        return tuple(
            i for i in self._items
            if i.status == UploadStatus.SUCCESS and i.docnumber is not None
        )

    def counts(self) -> Dict[UploadStatus, int]:
        counts = {status: 0 for status in UploadStatus}
        for item in self._items:
            counts[item.status] += 1
        return counts

    def subscribe(self, listener: Callable[[Tuple[UploadableItem, ...]], None]) -> None:
        """Called with the new snapshot after every mutation."""
        self._listeners.append(listener)

    # Mutations

    def next_id(self) -> str:
        taken = {i.id for i in self._items}
        while True:
            item_id = f"{self._id_prefix}-{self._counter}"
            self._counter += 1
            if item_id not in taken:
                return item_id

    def add_file(self, file: FileHandle, inference: Optional[DateInference] = None) -> UploadableItem:
        item = UploadableItem.create(self.next_id(), file, inference)
        self._commit(self._items + (item,))
        return item

    def add(self, items: Iterable[UploadableItem]) -> None:
        items = tuple(items)
        known = {i.id for i in self._items}
        for item in items:
            if item.id in known:
                raise ValueError(f"Duplicate item id: {item.id}")
            known.add(item.id)
        self._commit(self._items + items)

    def remove(self, item_id: str) -> None:
        item = self.get(item_id)
        if not item.is_editable:
            raise InvalidTransitionError(f"Cannot remove {item_id} while {item.status.value}")
        self._commit(tuple(i for i in self._items if i.id != item_id))

    def rename(self, item_id: str, name: str) -> UploadableItem:
        return self._edit(item_id, edited_file_name=name)

    def set_date_taken(self, item_id: str, date: Optional[datetime]) -> UploadableItem:
        # A manual edit invalidates the inferred provenance
        return self._edit(item_id, edited_date_taken=date, date_source=None)

    def transition(self, item_id: str, status: UploadStatus, **fields) -> UploadableItem:
        item = self.get(item_id)
        if status not in _ALLOWED_TRANSITIONS[item.status]:
            raise InvalidTransitionError(
                f"{item_id}: {item.status.value} -> {status.value} not allowed"
            )

        if status == UploadStatus.UPLOADING and "progress" in fields:
            progress = max(0, min(100, int(fields["progress"])))
            if item.status == UploadStatus.UPLOADING:
                progress = max(progress, item.progress)
            fields["progress"] = progress
        elif status == UploadStatus.SUCCESS:
            fields.setdefault("progress", 100)
            fields["error"] = None
        elif status == UploadStatus.ERROR:
            fields.setdefault("error", "Upload failed.")
            fields["docnumber"] = None

        return self._replace(item.evolve(status=status, **fields))

    def retry(self, item_id: str) -> UploadableItem:
        """Return a failed item to pending so the next batch picks it up."""
        item = self.get(item_id)
        if item.status != UploadStatus.ERROR:
            raise InvalidTransitionError(f"Only failed items can be retried ({item_id} is {item.status.value})")
        return self._replace(item.evolve(status=UploadStatus.PENDING, progress=0, error=None))

    def clear(self) -> None:
        """Discard every item (upload surface closed)."""
        if self._items:
            logger.debug("Discarding %d queued item(s)", len(self._items))
        self._commit(())

    def _edit(self, item_id: str, **fields) -> UploadableItem:
        item = self.get(item_id)
        if not item.is_editable:
            raise InvalidTransitionError(f"Cannot edit {item_id} while {item.status.value}")
        return self._replace(item.evolve(**fields))

    def _replace(self, updated: UploadableItem) -> UploadableItem:
        self._commit(tuple(updated if i.id == updated.id else i for i in self._items))
        return updated

    def _commit(self, items: Tuple[UploadableItem, ...]) -> None:
        self._items = items
        for listener in self._listeners[:]:
            try:
                listener(items)
            except Exception as e:
                logger.error(f"Error in queue listener: {e}")
