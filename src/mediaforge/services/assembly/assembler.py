"""Background assembly of chunked uploads into one durable object.

After finalization creates a provisional record that is served through the
streaming fallback URL, the chunks are reassembled into a temporary spool
file, uploaded to object storage, and the file/video records are switched
to the durable URL. Videos then go through post-processing.

Nothing here propagates to the request that triggered the run: terminal
failures are logged and reflected only in the session's assembly phase.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from mediaforge.core.config import settings
from mediaforge.core.logging import session_token_context
from mediaforge.models.assembly import (
    AssemblyPhase,
    AssemblyRequest,
    FilePatch,
    SessionPatch,
    UploadKind,
    VideoPatch,
    is_video_mime_type,
)
from mediaforge.services.assembly.chunks import ChunkStore
from mediaforge.services.assembly.clients import notify_processing_complete
from mediaforge.services.assembly.media import random_suffix
from mediaforge.services.assembly.orchestrator import PostProcessor
from mediaforge.services.assembly.registry import JobRegistry, assembly_jobs
from mediaforge.services.assembly.spool import SpoolWriter
from mediaforge.services.assembly.uploader import ObjectUploader
from mediaforge.storage.base import ObjectStorage
from mediaforge.storage.upload_store import RecordStore

logger = logging.getLogger(__name__)


def build_final_key(user_id: int, upload_type: UploadKind | str, filename: str) -> str:
    """Durable object key for an assembled upload."""
    folder = "videos" if UploadKind(upload_type) == UploadKind.VIDEO else "files"
    safe_name = ObjectStorage.sanitize_filename(filename) or "file"
    return f"user-{user_id}/{folder}/{int(time.time() * 1000)}-{random_suffix()}-{safe_name}"


class ChunkAssembler:
    """Reassembles one upload session at a time per session token."""

    def __init__(
        self,
        records: RecordStore,
        chunks: ChunkStore,
        uploader: ObjectUploader,
        post_processor: PostProcessor,
        registry: JobRegistry = assembly_jobs,
        progress_interval: int | None = None,
        max_assembly_bytes: int | None = None,
        spool_dir: str | None = None,
        notifier=notify_processing_complete,
    ):
        self.records = records
        self.chunks = chunks
        self.uploader = uploader
        self.post_processor = post_processor
        self.registry = registry
        self.progress_interval = progress_interval or settings.PROGRESS_WRITE_INTERVAL
        self.max_assembly_bytes = max_assembly_bytes or settings.max_assembly_bytes
        self.spool_dir = spool_dir
        self.notifier = notifier

    def is_in_progress(self, session_token: str) -> bool:
        return self.registry.is_active(session_token)

    async def assemble(self, request: AssemblyRequest) -> None:
        """Assemble, upload and post-process one session. Never raises."""
        token = request.session_token
        if not self.registry.try_acquire(token):
            logger.info("Already assembling session, skipping", extra={"session_token": token})
            return

        context_token = session_token_context.set(token)
        start_time = time.monotonic()
        spool: Optional[SpoolWriter] = None

        try:
            logger.info(
                "Starting assembly",
                extra={"session_token": token, "video_filename": request.filename, "file_id": request.file_id},
            )

            chunks = await self.chunks.list_chunks(request.session_id)
            if not chunks:
                logger.error("No chunks found for session", extra={"session_token": token})
                return

            total_chunks = len(chunks)
            await self._save_progress(
                request.session_id,
                SessionPatch(
                    assembly_phase=AssemblyPhase.DOWNLOADING,
                    assembly_total_chunks=total_chunks,
                    assembly_progress=0,
                    assembly_started_at=datetime.now(timezone.utc),
                ),
            )

            spool = SpoolWriter(token, spool_dir=self.spool_dir)
            await spool.open()

            for processed, chunk in enumerate(chunks, start=1):
                data = await self.chunks.fetch_with_retry(chunk)
                await spool.write(data)

                if processed % self.progress_interval == 0 or processed == total_chunks:
                    await self._save_progress(request.session_id, SessionPatch(assembly_progress=processed))
                    logger.info(
                        "Assembly download progress",
                        extra={
                            "session_token": token,
                            "progress": processed,
                            "total_chunks": total_chunks,
                            "size_mb": round(spool.bytes_written / 1024 / 1024, 1),
                        },
                    )

            size_bytes = await spool.close()
            logger.info(
                "All chunks written to spool",
                extra={"session_token": token, "size_mb": round(size_bytes / 1024 / 1024, 1)},
            )

            if size_bytes > self.max_assembly_bytes:
                # The streaming fallback keeps serving the file
                logger.warning(
                    "Assembled file exceeds assembly limit, leaving streaming URL in place",
                    extra={
                        "session_token": token,
                        "size_mb": round(size_bytes / 1024 / 1024, 1),
                        "max_size_mb": round(self.max_assembly_bytes / 1024 / 1024, 1),
                    },
                )
                await self._set_phase(request.session_id, AssemblyPhase.FAILED)
                return

            await self._set_phase(request.session_id, AssemblyPhase.UPLOADING)
            final_key = build_final_key(request.user_id, request.upload_type, request.filename)
            logger.info(
                "Uploading assembled file",
                extra={
                    "session_token": token,
                    "key": final_key,
                    "size_mb": round(size_bytes / 1024 / 1024, 1),
                    "streamed": self.uploader.uses_streaming(size_bytes),
                },
            )
            final_url = await self.uploader.upload(spool.path, final_key, request.mime_type, size_bytes)

            await self.records.update_file(request.file_id, FilePatch(file_key=final_key, url=final_url))
            if request.video_id is not None:
                await self.records.update_video(request.video_id, VideoPatch(file_key=final_key, url=final_url))
            await self.records.update_session(
                request.session_id, SessionPatch(final_file_key=final_key, final_file_url=final_url)
            )

            if is_video_mime_type(request.mime_type):
                await self.post_processor.run(
                    request,
                    final_url,
                    lambda phase: self._set_phase(request.session_id, phase),
                )

            await self._set_phase(request.session_id, AssemblyPhase.COMPLETE)
            elapsed = time.monotonic() - start_time
            logger.info(
                "Assembly complete",
                extra={
                    "session_token": token,
                    "file_id": request.file_id,
                    "elapsed_seconds": round(elapsed, 1),
                },
            )

            try:
                await self.notifier(request.user_id, request.filename, size_bytes, elapsed)
            except Exception as e:
                logger.warning(
                    "Processing-complete notification failed (non-critical)",
                    extra={"session_token": token, "error": str(e)},
                )

        except Exception as e:
            elapsed = time.monotonic() - start_time
            logger.error(
                "Assembly failed",
                extra={
                    "session_token": token,
                    "elapsed_seconds": round(elapsed, 1),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            await self._set_phase(request.session_id, AssemblyPhase.FAILED)

        finally:
            if spool is not None:
                await spool.discard()
            self.registry.release(token)
            session_token_context.reset(context_token)

    async def _set_phase(self, session_id: int, phase: AssemblyPhase) -> None:
        await self._save_progress(session_id, SessionPatch(assembly_phase=phase))

    async def _save_progress(self, session_id: int, patch: SessionPatch) -> None:
        """Persist assembly progress; a failed write never aborts the run."""
        try:
            await self.records.update_session(session_id, patch)
        except Exception as e:
            logger.warning(
                "Failed to persist assembly progress",
                extra={"session_id": session_id, "error": str(e)},
            )


_background_tasks: set[asyncio.Task] = set()


def _log_task_result(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background assembly task escaped with an error",
            extra={"error": str(exc), "error_type": type(exc).__name__},
            exc_info=exc,
        )


def schedule_assembly(assembler: ChunkAssembler, request: AssemblyRequest) -> asyncio.Task:
    """Start an assembly run without waiting for it (fire-and-forget)."""
    task = asyncio.create_task(assembler.assemble(request), name=f"assembly-{request.session_token}")
    _background_tasks.add(task)
    task.add_done_callback(_log_task_result)
    return task
