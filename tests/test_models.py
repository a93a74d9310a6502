"""Tests for docuploader models."""
from datetime import datetime
from pathlib import Path

import pytest
from docuploader.models import (
    BatchUploadResult,
    DateInference,
    DateSource,
    FileHandle,
    TransferOutcome,
    UploadConfig,
    UploadStatus,
    UploadableItem,
    strip_extension,
)


class TestStripExtension:
    def test_removes_last_extension(self):
        assert strip_extension("photo.jpg") == "photo"
        assert strip_extension("report.final.pdf") == "report.final"

    def test_without_extension(self):
        assert strip_extension("README") == "README"


class TestFileHandle:
    def test_from_path_captures_metadata(self, tmp_path):
        path = tmp_path / "scan.pdf"
        path.write_bytes(b"12345")

        handle = FileHandle.from_path(path)

        assert handle.name == "scan.pdf"
        assert handle.size == 5
        assert isinstance(handle.last_modified, datetime)

    def test_from_missing_path(self, tmp_path):
        handle = FileHandle.from_path(tmp_path / "gone.jpg")
        assert handle.size == 0
        assert handle.last_modified is None

    def test_immutable(self):
        handle = FileHandle(path=Path("a.jpg"), name="a.jpg")
        with pytest.raises(Exception):
            handle.name = "b.jpg"


class TestUploadableItem:
    def test_create_defaults(self):
        file = FileHandle(path=Path("IMG_0001.jpeg"), name="IMG_0001.jpeg", size=10)
        inference = DateInference(datetime(2020, 1, 1), DateSource.FILENAME_PARTIAL)

        item = UploadableItem.create("file-0", file, inference)

        assert item.status == UploadStatus.PENDING
        assert item.progress == 0
        assert item.edited_file_name == "IMG_0001"
        assert item.edited_date_taken == datetime(2020, 1, 1)
        assert item.date_source == DateSource.FILENAME_PARTIAL
        assert item.low_confidence_date is True
        assert item.is_editable is True
        assert item.is_terminal is False

    def test_create_without_inference(self):
        file = FileHandle(path=Path("notes.txt"), name="notes.txt")
        item = UploadableItem.create("file-1", file)
        assert item.edited_date_taken is None
        assert item.date_source is None
        assert item.low_confidence_date is False

    def test_terminal_statuses(self):
        file = FileHandle(path=Path("a.jpg"), name="a.jpg")
        item = UploadableItem.create("file-2", file)
        assert item.evolve(status=UploadStatus.SUCCESS).is_terminal
        assert item.evolve(status=UploadStatus.ERROR).is_terminal
        assert item.evolve(status=UploadStatus.ERROR).is_editable
        assert not item.evolve(status=UploadStatus.UPLOADING).is_editable


class TestDateSource:
    def test_low_confidence(self):
        assert DateSource.FILE.low_confidence is True
        assert DateSource.FILENAME_PARTIAL.low_confidence is True
        assert DateSource.EXIF.low_confidence is False
        assert DateSource.FILENAME_FULL.low_confidence is False

    def test_inference_none(self):
        inference = DateInference.none()
        assert inference.date is None
        assert inference.low_confidence is False


class TestTransferOutcome:
    def test_ok(self):
        outcome = TransferOutcome.ok("file-0", "a.jpg", 42)
        assert outcome.success is True
        assert outcome.docnumber == 42
        assert outcome.error is None

    def test_fail(self):
        outcome = TransferOutcome.fail("file-0", "a.jpg", "Server error: 500")
        assert outcome.success is False
        assert outcome.status == UploadStatus.ERROR
        assert outcome.docnumber is None


class TestBatchUploadResult:
    def test_docnumbers_only_from_successes(self):
        result = BatchUploadResult(
            total=3,
            uploaded=2,
            failed=1,
            results=(
                TransferOutcome.ok("file-0", "a.jpg", 1),
                TransferOutcome.fail("file-1", "b.jpg", "boom"),
                TransferOutcome.ok("file-2", "c.jpg", 3),
            ),
        )
        assert result.docnumbers == (1, 3)
        assert result.all_success is False

    def test_empty(self):
        assert BatchUploadResult.empty().all_success is True


class TestUploadConfig:
    def test_default_config(self):
        config = UploadConfig()
        assert config.poll_interval == 7.0
        assert config.max_parallel is None
        assert config.state_path.name == "state.json"
