"""
Models for docuploader module.

Immutable dataclasses following Single Responsibility Principle.
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def strip_extension(filename: str) -> str:
    """Remove the last extension: 'IMG_01.final.jpg' -> 'IMG_01.final'."""
    return _EXTENSION_RE.sub("", filename)


class UploadStatus(Enum):
    """Upload item status."""
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class DateSource(Enum):
    """Where an inferred date taken came from."""
    EXIF = "exif"
    FILENAME_FULL = "filename_full"
    FILENAME_PARTIAL = "filename_partial"
    FILE = "file"

    @property
    def low_confidence(self) -> bool:
        return self in (DateSource.FILENAME_PARTIAL, DateSource.FILE)


@dataclass(frozen=True)
class DateInference:
    """Best-effort date taken plus its provenance."""
    date: Optional[datetime] = None
    source: Optional[DateSource] = None

    @property
    def low_confidence(self) -> bool:
        return self.source is not None and self.source.low_confidence

    @classmethod
    def none(cls) -> "DateInference":
        return cls()


@dataclass(frozen=True)
class FileHandle:
    """Immutable reference to a local file and the metadata captured at selection."""
    path: Path
    name: str
    size: int = 0
    last_modified: Optional[datetime] = None

    @classmethod
    def from_path(cls, path) -> "FileHandle":
        path = Path(path)
        try:
            stat = path.stat()
        except OSError:
            return cls(path=path, name=path.name)
        # A zero mtime means the platform did not report one
        mtime = datetime.fromtimestamp(stat.st_mtime) if stat.st_mtime else None
        return cls(path=path, name=path.name, size=stat.st_size, last_modified=mtime)


@dataclass(frozen=True)
class UploadableItem:
    """One queued file and its upload lifecycle state."""
    id: str
    file: FileHandle
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    edited_file_name: str = ""
    edited_date_taken: Optional[datetime] = None
    date_source: Optional[DateSource] = None
    error: Optional[str] = None
    docnumber: Optional[int] = None

    @classmethod
    def create(cls, item_id: str, file: FileHandle, inference: Optional[DateInference] = None):
        inference = inference or DateInference.none()
        return cls(
            id=item_id,
            file=file,
            edited_file_name=strip_extension(file.name),
            edited_date_taken=inference.date,
            date_source=inference.source,
        )

    @property
    def is_editable(self) -> bool:
        return self.status in (UploadStatus.PENDING, UploadStatus.ERROR)

    @property
    def is_terminal(self) -> bool:
        return self.status in (UploadStatus.SUCCESS, UploadStatus.ERROR)

    @property
    def low_confidence_date(self) -> bool:
        return self.date_source is not None and self.date_source.low_confidence

    def evolve(self, **changes) -> "UploadableItem":
        return replace(self, **changes)


@dataclass(frozen=True)
class TransferOutcome:
    """Immutable result of a single transfer."""
    item_id: str
    filename: str
    status: UploadStatus = UploadStatus.SUCCESS
    docnumber: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCESS

    @classmethod
    def ok(cls, item_id: str, filename: str, docnumber: Optional[int]):
        return cls(
            item_id=item_id,
            filename=filename,
            status=UploadStatus.SUCCESS,
            docnumber=docnumber,
        )

    @classmethod
    def fail(cls, item_id: str, filename: str, error: str):
        return cls(
            item_id=item_id,
            filename=filename,
            status=UploadStatus.ERROR,
            error=error,
        )


@dataclass
class BatchUploadResult:
    """Result of one batch upload run."""
    total: int
    uploaded: int
    failed: int
    results: Tuple[TransferOutcome, ...] = field(default_factory=tuple)

    @property
    def all_success(self) -> bool:
        return self.failed == 0

    @property
    def docnumbers(self) -> Tuple[int, ...]:
        return tuple(r.docnumber for r in self.results if r.success and r.docnumber)

    @classmethod
    def empty(cls) -> "BatchUploadResult":
        return cls(total=0, uploaded=0, failed=0)


DEFAULT_STATE_DIR = Path.home() / ".cache" / "docuploader"


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload sessions."""
    poll_interval: float = 7.0
    request_timeout: int = 60
    max_retries: int = 3
    max_parallel: Optional[int] = None  # None = every pending item at once
    state_dir: Path = DEFAULT_STATE_DIR
    state_file: str = "state.json"

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir) / self.state_file
