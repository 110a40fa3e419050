"""Post-processing of a freshly uploaded video.

Runs metadata probe, thumbnail extraction and transcode-queue submission in
that order. Every step is best-effort: a failure is logged and leaves only
its own optional fields unset.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from mediaforge.core.config import settings
from mediaforge.models.assembly import (
    AssemblyPhase,
    AssemblyRequest,
    FilePatch,
    TranscodeStatus,
    VideoMetadata,
    VideoPatch,
    is_absolute_http_url,
)
from mediaforge.services.assembly.clients import TranscodeClient
from mediaforge.services.assembly.media import extract_thumbnail, probe_video
from mediaforge.services.assembly.registry import JobRegistry, transcode_jobs
from mediaforge.storage.base import ObjectStorage
from mediaforge.storage.upload_store import RecordStore

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[AssemblyPhase], Awaitable[None]]

_TRANSCODE_ACTIVE = (TranscodeStatus.PENDING, TranscodeStatus.PROCESSING, TranscodeStatus.COMPLETED)


class PostProcessor:
    """Sequences metadata, thumbnail and transcode steps after an upload."""

    def __init__(
        self,
        records: RecordStore,
        objects: ObjectStorage,
        transcoder: Optional[TranscodeClient] = None,
        registry: JobRegistry = transcode_jobs,
        settle_delay_seconds: float | None = None,
        cold_start_delay_seconds: float | None = None,
        probe=probe_video,
        thumbnailer=extract_thumbnail,
    ):
        self.records = records
        self.objects = objects
        self.transcoder = transcoder or TranscodeClient()
        self.registry = registry
        self.settle_delay_seconds = (
            settings.TRANSCODE_SETTLE_DELAY_SECONDS if settle_delay_seconds is None else settle_delay_seconds
        )
        self.cold_start_delay_seconds = (
            settings.TRANSCODE_COLD_START_DELAY_SECONDS
            if cold_start_delay_seconds is None
            else cold_start_delay_seconds
        )
        self._probe = probe
        self._thumbnailer = thumbnailer
        self._tasks: set[asyncio.Task] = set()

    async def run(self, request: AssemblyRequest, final_url: str, set_phase: PhaseCallback) -> None:
        """Run all post-processing steps for an uploaded video."""
        metadata = await self.extract_metadata(request, final_url)

        await set_phase(AssemblyPhase.GENERATING_THUMBNAIL)
        await self.attach_thumbnail(request, final_url)

        if request.video_id is None:
            return
        try:
            await self.queue_transcode(
                request.video_id,
                final_url,
                source_width=metadata.width if metadata else None,
                source_height=metadata.height if metadata else None,
                filename=request.filename,
                user_id=request.user_id,
                delay_seconds=self.settle_delay_seconds,
            )
        except Exception as e:
            logger.warning(
                "Transcode trigger failed (non-fatal)",
                extra={"video_id": request.video_id, "error": str(e)},
            )

    async def extract_metadata(self, request: AssemblyRequest, final_url: str) -> Optional[VideoMetadata]:
        try:
            metadata = await self._probe(final_url)
            if metadata is None:
                return None

            if request.video_id is not None:
                patch = VideoPatch(
                    duration=metadata.duration if metadata.duration > 0 else None,
                    width=metadata.width if metadata.width and metadata.width > 0 else None,
                    height=metadata.height if metadata.height and metadata.height > 0 else None,
                )
                await self.records.update_video(request.video_id, patch)
            return metadata
        except Exception as e:
            logger.warning(
                "Metadata extraction failed (non-fatal)",
                extra={"file_id": request.file_id, "error": str(e)},
            )
            return None

    async def attach_thumbnail(self, request: AssemblyRequest, final_url: str) -> None:
        try:
            thumbnail = await self._thumbnailer(final_url, self.objects, request.user_id, request.filename)
            if thumbnail is None:
                return
            await self.records.update_file(
                request.file_id, FilePatch(thumbnail_url=thumbnail.url, thumbnail_key=thumbnail.key)
            )
            if request.video_id is not None:
                await self.records.update_video(
                    request.video_id, VideoPatch(thumbnail_url=thumbnail.url, thumbnail_key=thumbnail.key)
                )
            logger.info("Video thumbnail generated and saved", extra={"file_id": request.file_id})
        except Exception as e:
            logger.warning(
                "Thumbnail generation failed (non-fatal)",
                extra={"file_id": request.file_id, "error": str(e)},
            )

    def is_transcode_queued(self, video_id: int) -> bool:
        return self.registry.is_active(video_id)

    async def queue_transcode(
        self,
        video_id: int,
        source_url: str,
        source_width: int | None = None,
        source_height: int | None = None,
        filename: str | None = None,
        user_id: int | None = None,
        delay_seconds: float | None = None,
    ) -> bool:
        """Schedule a transcode for a video once the settling delay passes.

        Returns:
            True if a trigger was queued, False if one is already pending or
            the URL is not a durable http(s) URL
        """
        if not is_absolute_http_url(source_url):
            logger.info(
                "Skipping transcode, URL is not a durable object URL",
                extra={"video_id": video_id, "url": source_url[:60]},
            )
            return False

        if not self.registry.try_acquire(video_id):
            logger.info("Video already queued for transcode, skipping", extra={"video_id": video_id})
            return False

        delay = self.cold_start_delay_seconds if delay_seconds is None else delay_seconds
        logger.info("Queuing transcode", extra={"video_id": video_id, "delay_seconds": delay})

        task = asyncio.create_task(
            self._transcode_after_delay(video_id, source_url, source_width, source_height, filename, user_id, delay)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def drain(self) -> None:
        """Wait for every queued transcode trigger to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _transcode_after_delay(
        self,
        video_id: int,
        source_url: str,
        source_width: int | None,
        source_height: int | None,
        filename: str | None,
        user_id: int | None,
        delay: float,
    ) -> None:
        try:
            await asyncio.sleep(delay)

            # Re-read: the probe may have filled in dimensions meanwhile
            video = await self.records.get_video(video_id)
            if video is None:
                logger.info("Video no longer exists, skipping transcode", extra={"video_id": video_id})
                return
            if video.transcode_status in _TRANSCODE_ACTIVE:
                logger.info(
                    "Video already has transcode status, skipping",
                    extra={"video_id": video_id, "transcode_status": video.transcode_status.value},
                )
                return

            url = video.url if is_absolute_http_url(video.url) else source_url
            await self.records.update_video(video_id, VideoPatch(transcode_status=TranscodeStatus.PENDING))

            logger.info("Starting transcode", extra={"video_id": video_id})
            result = await self.transcoder.transcode(
                video_id,
                url,
                source_width=video.width or source_width,
                source_height=video.height or source_height,
                filename=video.filename or filename,
                user_id=video.user_id or user_id,
            )
            if result.success:
                logger.info(
                    "Transcode complete",
                    extra={"video_id": video_id, "master_playlist_url": result.master_playlist_url},
                )
            else:
                logger.error("Transcode failed", extra={"video_id": video_id, "error": result.error})
                await self.records.update_video(video_id, VideoPatch(transcode_status=TranscodeStatus.FAILED))
        except Exception as e:
            logger.error(
                "Transcode trigger error",
                extra={"video_id": video_id, "error": str(e)},
                exc_info=True,
            )
            await self._mark_transcode_failed(video_id)
        finally:
            self.registry.release(video_id)

    async def _mark_transcode_failed(self, video_id: int) -> None:
        try:
            await self.records.update_video(video_id, VideoPatch(transcode_status=TranscodeStatus.FAILED))
        except Exception as e:
            logger.error(
                "Failed to mark transcode as failed",
                extra={"video_id": video_id, "error": str(e)},
            )
