"""Temporary on-disk spool that chunks are reassembled into."""

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Optional

from mediaforge.core.config import settings
from mediaforge.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

_CLOSE = object()


class SpoolWriter:
    """Append-only spool file fed through a bounded queue.

    The producer awaits ``write``; once ``queue_depth`` buffers are waiting
    for the disk it suspends until the writer task drains one. At most
    ``queue_depth`` chunks are held in memory at any time.
    """

    def __init__(self, session_token: str, spool_dir: str | None = None, queue_depth: int | None = None):
        directory = Path(spool_dir or settings.SPOOL_DIR or tempfile.gettempdir())
        directory.mkdir(parents=True, exist_ok=True)
        safe_token = ObjectStorage.sanitize_filename(session_token)
        self.path = directory / f"assembly-{safe_token}-{int(time.time() * 1000)}"
        self.bytes_written = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_depth or settings.SPOOL_QUEUE_DEPTH)
        self._file: Optional[BinaryIO] = None
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None

    async def open(self) -> "SpoolWriter":
        self._file = await asyncio.to_thread(open, self.path, "wb")
        self._task = asyncio.create_task(self._drain())
        return self

    async def write(self, data: bytes) -> None:
        """Queue bytes for appending, suspending while the queue is full."""
        if self._error is not None:
            raise self._error
        await self._queue.put(data)
        self.bytes_written += len(data)

    async def close(self) -> int:
        """Flush queued writes and close the file.

        Returns:
            Total bytes written

        Raises:
            OSError: If any queued write failed
        """
        if self._task is not None:
            await self._queue.put(_CLOSE)
            await self._task
            self._task = None
        if self._file is not None:
            await asyncio.to_thread(self._file.close)
            self._file = None
        if self._error is not None:
            raise self._error
        return self.bytes_written

    async def discard(self) -> None:
        """Stop the writer and remove the spool file from disk."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._file is not None:
            self._file.close()
            self._file = None
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Failed to clean up spool file",
                extra={"spool_path": str(self.path), "error": str(e)},
            )

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            if self._error is not None:
                continue
            try:
                await asyncio.to_thread(self._file.write, item)
            except OSError as e:
                self._error = e
