"""Chunk listing and download for the assembly pipeline."""

import logging
from typing import List, Optional

import httpx
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_incrementing

from mediaforge.core.config import settings
from mediaforge.models.assembly import Chunk
from mediaforge.services.assembly.exceptions import ChunkFetchError
from mediaforge.storage.base import ObjectStorage
from mediaforge.storage.upload_store import RecordStore

logger = logging.getLogger(__name__)


class ChunkStore:
    """Reads chunks of an upload session from their holding area."""

    def __init__(
        self,
        records: RecordStore,
        objects: ObjectStorage,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.records = records
        self.objects = objects
        self._http_client = http_client
        self.max_attempts = max_attempts or settings.CHUNK_FETCH_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.CHUNK_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    async def list_chunks(self, session_id: int) -> List[Chunk]:
        return await self.records.list_chunks(session_id)

    async def fetch(self, chunk: Chunk) -> bytes:
        """Download one chunk through its readable URL.

        Raises:
            ChunkFetchError: If the URL cannot be resolved or the download fails
        """
        try:
            location = await self.objects.get(chunk.storage_key)
            if self._http_client is not None:
                response = await self._http_client.get(location.url)
            else:
                async with httpx.AsyncClient(timeout=settings.CHUNK_FETCH_TIMEOUT) as client:
                    response = await client.get(location.url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            raise ChunkFetchError(
                f"Failed to fetch chunk {chunk.chunk_index}: HTTP {e.response.status_code}",
                chunk_index=chunk.chunk_index,
            ) from e
        except ChunkFetchError:
            raise
        except Exception as e:
            raise ChunkFetchError(
                f"Failed to fetch chunk {chunk.chunk_index}: {e}",
                chunk_index=chunk.chunk_index,
            ) from e

    async def fetch_with_retry(self, chunk: Chunk) -> bytes:
        """Fetch a chunk, retrying with linearly increasing backoff.

        Waits attempt_number * backoff_seconds between attempts.

        Raises:
            ChunkFetchError: After the last attempt fails
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            before_sleep=self._log_retry(chunk),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self.fetch(chunk)
        except RetryError as e:
            last = e.last_attempt.exception()
            raise ChunkFetchError(
                f"Chunk {chunk.chunk_index} failed after {self.max_attempts} attempts: {last}",
                chunk_index=chunk.chunk_index,
            ) from last

    def _log_retry(self, chunk: Chunk):
        def _before_sleep(retry_state) -> None:
            logger.warning(
                f"Chunk fetch failed (attempt {retry_state.attempt_number}/{self.max_attempts}), retrying",
                extra={
                    "chunk_index": chunk.chunk_index,
                    "attempt": retry_state.attempt_number,
                    "wait_seconds": retry_state.next_action.sleep if retry_state.next_action else None,
                    "error": str(retry_state.outcome.exception()),
                },
            )

        return _before_sleep
