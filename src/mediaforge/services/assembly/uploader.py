"""Upload of an assembled spool file to durable object storage.

Objects up to MEMORY_UPLOAD_LIMIT_MB are read into memory and stored with
a single put. Larger objects are streamed from disk by a curl subprocess to
the storage upload API, so multi-gigabyte files never enter memory.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from mediaforge.core.config import settings
from mediaforge.models.assembly import is_absolute_http_url
from mediaforge.services.assembly.exceptions import UploadTransportError
from mediaforge.services.assembly.media import stop_process
from mediaforge.services.assembly.timeouts import hard_timeout_seconds, timeout_seconds
from mediaforge.storage.base import ObjectStorage

logger = logging.getLogger(__name__)


class CurlTransport:
    """Streams a file to the storage upload API as a multipart form."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        curl_path: str | None = None,
        heartbeat_seconds: float | None = None,
    ):
        self.api_url = (api_url if api_url is not None else settings.STORAGE_UPLOAD_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.STORAGE_UPLOAD_API_KEY
        self.curl_path = curl_path or settings.CURL_PATH
        self.heartbeat_seconds = heartbeat_seconds or settings.UPLOAD_HEARTBEAT_SECONDS

    def build_command(self, spool_path: Path, key: str, mime_type: str, soft_timeout: int) -> list[str]:
        if not self.api_url:
            raise UploadTransportError("STORAGE_UPLOAD_API_URL not configured")
        normalized_key = key.lstrip("/")
        upload_url = f"{self.api_url}/v1/storage/upload?path={quote(normalized_key, safe='')}"
        file_name = normalized_key.split("/")[-1] or "file"
        return [
            self.curl_path,
            "-sS",
            "-X", "POST",
            upload_url,
            "-H", f"Authorization: Bearer {self.api_key}",
            "-F", f"file=@{spool_path};type={mime_type};filename={file_name}",
            "--max-time", str(soft_timeout),
        ]

    async def send(
        self,
        spool_path: Path,
        key: str,
        mime_type: str,
        soft_timeout: int,
        hard_timeout: int,
    ) -> Dict[str, Any]:
        """Run one streamed upload and return the parsed JSON response.

        Raises:
            UploadTransportError: On non-zero exit, hard timeout or unparseable output
        """
        cmd = self.build_command(spool_path, key, mime_type, soft_timeout)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise UploadTransportError(f"Failed to start curl: {e}") from e
        heartbeat = asyncio.create_task(self._heartbeat(key))
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=hard_timeout)
        except asyncio.TimeoutError:
            await stop_process(process)
            raise UploadTransportError(f"Streamed upload killed after {hard_timeout}s hard timeout")
        except asyncio.CancelledError:
            await stop_process(process)
            raise
        finally:
            heartbeat.cancel()

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()[-300:]
            raise UploadTransportError(f"curl exited with code {process.returncode}: {message}")

        body = stdout.decode(errors="replace")
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise UploadTransportError(f"Unparseable upload response: {body[:200]}") from e

    async def _heartbeat(self, key: str) -> None:
        started = time.monotonic()
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            logger.info(
                "Streamed upload still in progress",
                extra={"key": key, "elapsed_seconds": round(time.monotonic() - started, 1)},
            )


class ObjectUploader:
    """Chooses the upload strategy for an assembled object by its size."""

    def __init__(
        self,
        objects: ObjectStorage,
        transport: Optional[CurlTransport] = None,
        memory_limit_bytes: int | None = None,
        retry_delay_seconds: float | None = None,
        grace_seconds: int | None = None,
    ):
        self.objects = objects
        self.transport = transport or CurlTransport()
        self.memory_limit_bytes = memory_limit_bytes or settings.memory_upload_limit_bytes
        self.retry_delay_seconds = (
            settings.STREAM_UPLOAD_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.grace_seconds = settings.HARD_TIMEOUT_GRACE_SECONDS if grace_seconds is None else grace_seconds

    def uses_streaming(self, size_bytes: int) -> bool:
        return size_bytes > self.memory_limit_bytes

    async def upload(self, spool_path: Path, key: str, mime_type: str, size_bytes: int) -> str:
        """Upload the spool file and return its final URL.

        Raises:
            StorageError: If the buffered put fails
            UploadTransportError: If the streamed upload fails twice
        """
        if not self.uses_streaming(size_bytes):
            data = await asyncio.to_thread(Path(spool_path).read_bytes)
            stored = await self.objects.put(key, data, mime_type)
            return stored.url
        return await self._upload_streamed(Path(spool_path), key, mime_type, size_bytes)

    async def _upload_streamed(self, spool_path: Path, key: str, mime_type: str, size_bytes: int) -> str:
        soft_timeout = timeout_seconds(size_bytes)
        hard_timeout = hard_timeout_seconds(size_bytes, self.grace_seconds)

        for attempt in (1, 2):
            logger.info(
                f"Streaming upload (attempt {attempt}/2)",
                extra={
                    "key": key,
                    "size_mb": round(size_bytes / 1024 / 1024, 1),
                    "timeout_seconds": soft_timeout,
                    "hard_timeout_seconds": hard_timeout,
                },
            )
            try:
                response = await self.transport.send(spool_path, key, mime_type, soft_timeout, hard_timeout)
                url = response.get("url") if isinstance(response, dict) else None
                if not is_absolute_http_url(url):
                    raise UploadTransportError(f"No URL in upload response: {str(response)[:200]}")
                return url
            except UploadTransportError as e:
                if attempt == 2:
                    logger.error(
                        "Streamed upload failed after retry",
                        extra={"key": key, "error": str(e)},
                    )
                    raise
                logger.warning(
                    "Streamed upload failed, retrying",
                    extra={"key": key, "error": str(e), "retry_delay_seconds": self.retry_delay_seconds},
                )
                await asyncio.sleep(self.retry_delay_seconds)
