"""FFprobe metadata extraction and FFmpeg thumbnail generation."""

import asyncio
import json
import logging
import os
import secrets
import string
import tempfile
import time
from pathlib import Path
from typing import Optional

from mediaforge.core.config import settings
from mediaforge.models.assembly import Thumbnail, VideoMetadata, is_absolute_http_url
from mediaforge.services.assembly.exceptions import ProbeError, ThumbnailError
from mediaforge.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


async def stop_process(process: asyncio.subprocess.Process) -> None:
    """Kill a child process and reap it. A child that already exited is only reaped."""
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def _run(cmd: list[str], timeout: float) -> tuple[int, bytes, bytes]:
    """Run a subprocess, killing it if it outlives ``timeout`` or the caller is cancelled."""
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        await stop_process(process)
        raise
    return process.returncode, stdout, stderr


def _parse_frame_rate(value: str | None) -> Optional[float]:
    """Parse an ffprobe fraction such as "30000/1001"."""
    if not value or "/" not in value:
        return None
    num, _, den = value.partition("/")
    try:
        numerator, denominator = int(num), int(den)
    except ValueError:
        return None
    if denominator <= 0:
        return None
    return round(numerator / denominator, 2)


def parse_probe_output(raw: str) -> VideoMetadata:
    """Build VideoMetadata from ``ffprobe -of json`` output.

    Raises:
        ProbeError: If the output is not valid JSON
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}") from e

    fmt = data.get("format") or {}
    streams = data.get("streams") or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), {})
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), {})

    try:
        duration = round(float(fmt.get("duration") or 0))
    except (TypeError, ValueError):
        duration = 0
    try:
        bitrate = int(fmt.get("bit_rate")) or None
    except (TypeError, ValueError):
        bitrate = None

    return VideoMetadata(
        duration=duration,
        width=video_stream.get("width") or None,
        height=video_stream.get("height") or None,
        codec=video_stream.get("codec_name"),
        audio_codec=audio_stream.get("codec_name"),
        bitrate=bitrate,
        fps=_parse_frame_rate(video_stream.get("r_frame_rate")),
    )


async def probe_video(url: str, timeout: float | None = None) -> Optional[VideoMetadata]:
    """Extract duration and dimensions of a video with ffprobe.

    Args:
        url: Absolute URL of the video
        timeout: Seconds before ffprobe is killed

    Returns:
        VideoMetadata, or None when the URL is relative or probing fails
    """
    if not is_absolute_http_url(url):
        logger.warning("Cannot probe relative URL", extra={"url": url[:80]})
        return None

    cmd = [
        settings.FFPROBE_PATH,
        "-v", "error",
        "-show_entries", "format=duration,bit_rate",
        "-show_entries", "stream=width,height,codec_name,codec_type,r_frame_rate",
        "-of", "json",
        url,
    ]
    try:
        returncode, stdout, stderr = await _run(cmd, timeout or settings.PROBE_TIMEOUT)
        if returncode != 0:
            raise ProbeError(f"ffprobe failed: {stderr.decode(errors='replace')[-300:]}")
        metadata = parse_probe_output(stdout.decode(errors="replace"))
    except asyncio.TimeoutError:
        logger.error("ffprobe timeout", extra={"url": url[:80]})
        return None
    except (ProbeError, OSError) as e:
        logger.error("Failed to extract video metadata", extra={"url": url[:80], "error": str(e)})
        return None

    logger.info(
        "Extracted video metadata",
        extra={
            "url": url[:80],
            "duration": metadata.duration,
            "width": metadata.width,
            "height": metadata.height,
            "codec": metadata.codec,
            "fps": metadata.fps,
        },
    )
    return metadata


async def extract_thumbnail(
    video_url: str,
    objects: ObjectStorage,
    user_id: int,
    filename: str,
    seek_seconds: float | None = None,
    width: int | None = None,
    quality: int | None = None,
) -> Optional[Thumbnail]:
    """Grab one frame of a video as JPEG and upload it.

    Returns:
        The stored thumbnail, or None if no frame could be produced
    """
    seek_seconds = settings.THUMBNAIL_SEEK_SECONDS if seek_seconds is None else seek_seconds
    width = width or settings.THUMBNAIL_WIDTH
    quality = quality or settings.THUMBNAIL_QUALITY

    timestamp = int(time.time() * 1000)
    suffix = random_suffix()
    output_file = Path(tempfile.gettempdir()) / f"thumb-{timestamp}-{suffix}.jpg"

    cmd = [
        settings.FFMPEG_PATH,
        "-ss", str(seek_seconds),
        "-i", video_url,
        "-vframes", "1",
        "-vf", f"scale={width}:-1",
        "-q:v", str(quality),
        "-y",
        str(output_file),
    ]

    try:
        logger.info("Generating thumbnail", extra={"video_filename": filename, "url": video_url[:80]})
        try:
            returncode, _, stderr = await _run(cmd, settings.THUMBNAIL_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise ThumbnailError("ffmpeg timed out extracting thumbnail") from e
        except OSError as e:
            raise ThumbnailError(f"Failed to start ffmpeg: {e}") from e
        if returncode != 0:
            raise ThumbnailError(f"ffmpeg failed: {stderr.decode(errors='replace')[-300:]}")

        if not output_file.exists() or output_file.stat().st_size == 0:
            logger.error("ffmpeg produced no thumbnail", extra={"video_filename": filename})
            return None

        data = await asyncio.to_thread(output_file.read_bytes)
        base_name = ObjectStorage.sanitize_filename(Path(filename).stem) or "video"
        key = f"user-{user_id}/thumbnails/{timestamp}-{suffix}-{base_name}.jpg"
        stored = await objects.put(key, data, "image/jpeg")

        logger.info(
            "Thumbnail uploaded",
            extra={"video_filename": filename, "key": stored.key, "size_kb": round(len(data) / 1024, 1)},
        )
        return Thumbnail(url=stored.url, key=stored.key)
    except ThumbnailError as e:
        logger.error("Failed to generate thumbnail", extra={"video_filename": filename, "error": str(e)})
        return None
    finally:
        try:
            os.remove(output_file)
        except FileNotFoundError:
            pass
