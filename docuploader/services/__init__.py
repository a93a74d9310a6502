"""Services for docuploader module."""
from .api_client import APIError, HTTPAPIClient
from .date_inference import DateTakenResolver, parse_date_from_filename, read_embedded_date
from .payload_mapper import UploadPayloadMapper
from .processing_set import ProcessingSetRepository
from .state_store import JsonFileStore, MemoryStore
from .transport import UploadTransport

__all__ = [
    "APIError",
    "HTTPAPIClient",
    "DateTakenResolver",
    "parse_date_from_filename",
    "read_embedded_date",
    "UploadPayloadMapper",
    "ProcessingSetRepository",
    "JsonFileStore",
    "MemoryStore",
    "UploadTransport",
]
