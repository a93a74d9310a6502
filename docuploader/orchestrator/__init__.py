"""Orchestrator package - coordinates upload sessions."""
from .batch_upload import BatchUploadCoordinator
from .core import UploadOrchestrator
from .reconciliation import ProcessingReconciler, ReconcilerState

__all__ = [
    "UploadOrchestrator",
    "BatchUploadCoordinator",
    "ProcessingReconciler",
    "ReconcilerState",
]
