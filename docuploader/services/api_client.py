"""HTTP adapter for document API operations."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..protocols import ProgressCallback

logger = logging.getLogger(__name__)


class APIError(RuntimeError):
    """Raised when the API answers with a client or server error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProgressStream(httpx.AsyncByteStream):
    """Wraps a request body and reports bytes handed to the transport."""

    def __init__(self, stream: httpx.AsyncByteStream, total: int, callback: Optional[ProgressCallback]):
        self._stream = stream
        self._total = total
        self._callback = callback

    async def __aiter__(self) -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in self._stream:
            sent += len(chunk)
            if self._callback:
                try:
                    await self._callback(sent, self._total)
                except Exception as e:
                    # Progress reporting must never cut the body short
                    logger.warning(f"Progress callback failed: {e}")
            yield chunk

    async def aclose(self) -> None:
        await self._stream.aclose()


class HTTPAPIClient:
    """
    HTTP client adapter for API calls.

    Implements IAPIClient protocol.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")
        return self._client

    async def post(self, endpoint: str, json: Dict) -> Any:
        client = self._require_client()
        max_retries = self._max_retries
        last_exception = None

        for attempt in range(max_retries):
            try:
                response = await client.post(endpoint, json=json)

                if response.status_code >= 500 and attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except ValueError:
                        error_detail = response.text
                    raise APIError(
                        f"API error {response.status_code} on POST {endpoint}: {error_detail}",
                        status_code=response.status_code,
                    )

                return response
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                last_exception = exc
                if attempt < max_retries - 1:
                    logger.debug(f"POST {endpoint} failed ({exc}), retrying")
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise

        if last_exception:
            raise last_exception
        raise RuntimeError(f"Failed to POST {endpoint} after {max_retries} attempts")

    async def upload(
        self,
        endpoint: str,
        data: Dict[str, str],
        file_path: Path,
        filename: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> httpx.Response:
        """
        POST a multipart form with a single ``file`` part.

        Not retried: the caller owns the outcome of every transfer. Any
        status code is returned as-is; transport failures raise httpx errors.
        """
        client = self._require_client()
        file_path = Path(file_path)

        with open(file_path, "rb") as fh:
            request = client.build_request(
                "POST",
                endpoint,
                data=data,
                files={"file": (filename or file_path.name, fh)},
            )
            total = int(request.headers.get("Content-Length") or 0)
            request.stream = ProgressStream(request.stream, total, progress_callback)
            return await client.send(request)
