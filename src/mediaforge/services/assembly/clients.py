"""HTTP clients for the transcode backend and the notification service."""

import logging
from typing import Optional

import httpx

from mediaforge.core.config import settings
from mediaforge.models.assembly import TranscodeResult
from mediaforge.services.assembly.exceptions import TranscodeError

logger = logging.getLogger(__name__)


class TranscodeClient:
    """Submits adaptive-bitrate transcode jobs to the transcode backend."""

    def __init__(self, base_url: str | None = None, timeout: int | None = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url if base_url is not None else settings.TRANSCODE_SERVICE_URL).rstrip("/")
        self.timeout = timeout or settings.TRANSCODE_REQUEST_TIMEOUT
        self._http_client = http_client

    async def transcode(
        self,
        video_id: int,
        source_url: str,
        source_width: int | None = None,
        source_height: int | None = None,
        filename: str | None = None,
        user_id: int | None = None,
    ) -> TranscodeResult:
        """Ask the backend to transcode a video.

        Raises:
            TranscodeError: If the backend is unconfigured or the request fails
        """
        if not self.base_url:
            raise TranscodeError("TRANSCODE_SERVICE_URL not configured")

        payload = {
            "video_id": video_id,
            "source_url": source_url,
            "source_width": source_width,
            "source_height": source_height,
            "filename": filename,
            "user_id": user_id,
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(f"{self.base_url}/transcode", json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}/transcode", json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TranscodeError(f"Transcode request failed for video {video_id}: {e}") from e

        return TranscodeResult(
            success=bool(body.get("success")),
            master_playlist_url=body.get("master_playlist_url"),
            error=body.get("error"),
        )


async def notify_processing_complete(
    user_id: int,
    filename: str,
    size_bytes: int,
    elapsed_seconds: float,
    service_url: str | None = None,
    timeout: int | None = None,
) -> None:
    """Tell the owning user their file finished processing.

    Errors are logged but don't propagate to the caller.
    """
    service_url = settings.NOTIFICATION_SERVICE_URL if service_url is None else service_url
    size_mb = round(size_bytes / 1024 / 1024, 1)
    if not service_url:
        logger.info(
            "Notification service not configured, skipping processing-complete message",
            extra={"user_id": user_id, "video_filename": filename},
        )
        return

    payload = {
        "user_id": user_id,
        "title": "File processing complete",
        "content": f"{filename} ({size_mb}MB) finished processing in {elapsed_seconds:.1f}s",
        "filename": filename,
        "size_bytes": size_bytes,
        "elapsed_seconds": round(elapsed_seconds, 1),
    }
    timeout = timeout or settings.NOTIFICATION_TIMEOUT

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(f"{service_url.rstrip('/')}/notifications", json=payload)
            response.raise_for_status()
        logger.info("Processing-complete notification sent", extra={"user_id": user_id})

    except httpx.TimeoutException:
        logger.warning(
            "Notification timeout (non-critical)",
            extra={"user_id": user_id, "timeout": timeout},
        )

    except httpx.HTTPError as e:
        logger.warning(
            "Notification failed (non-critical)",
            extra={
                "user_id": user_id,
                "error": str(e),
                "status_code": e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None,
            },
        )
