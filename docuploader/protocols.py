"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces injected into the queue, transport and poller.
"""
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable


ProgressCallback = Callable[[int, int], Awaitable[None]]


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for API operations."""

    async def post(self, endpoint: str, json: Dict) -> Any:
        """POST a JSON body to the API."""
        ...

    async def upload(
        self,
        endpoint: str,
        data: Dict[str, str],
        file_path: Path,
        filename: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Any:
        """POST a multipart form with one file, reporting bytes sent."""
        ...


@runtime_checkable
class IKeyValueStore(Protocol):
    """Durable string key-value storage."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def clear(self, key: str) -> None:
        ...
