"""
docuploader - batch document upload with date inference and processing tracking.

Usage:
    from docuploader import UploadOrchestrator, UploadConfig

    async with UploadOrchestrator(api_url, user="alice") as session:
        items = await session.add_files(paths)
        session.rename(items[0].id, "Graduation")

        result = await session.upload_pending(parent_id="12")
        if result.uploaded:
            await session.analyze(context="recent")

    # Later, in a new process: the persisted processing set is picked up again
    async with UploadOrchestrator(api_url, user="alice") as session:
        await session.reconciler.wait()
"""
from .models import (
    BatchUploadResult,
    DateInference,
    DateSource,
    FileHandle,
    TransferOutcome,
    UploadConfig,
    UploadStatus,
    UploadableItem,
)
from .orchestrator import UploadOrchestrator, ProcessingReconciler, ReconcilerState
from .upload_queue import InvalidTransitionError, UploadQueue
from .services import (
    APIError,
    DateTakenResolver,
    HTTPAPIClient,
    JsonFileStore,
    MemoryStore,
    ProcessingSetRepository,
    UploadTransport,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "ProcessingReconciler",
    "ReconcilerState",
    "UploadQueue",
    # Models
    "BatchUploadResult",
    "DateInference",
    "DateSource",
    "FileHandle",
    "TransferOutcome",
    "UploadConfig",
    "UploadStatus",
    "UploadableItem",
    "InvalidTransitionError",
    # Services
    "APIError",
    "DateTakenResolver",
    "HTTPAPIClient",
    "JsonFileStore",
    "MemoryStore",
    "ProcessingSetRepository",
    "UploadTransport",
]
