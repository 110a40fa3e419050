"""Records, patches and result types shared by the assembly pipeline."""

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Optional, TypeVar


class UploadStatus(str, Enum):
    """Lifecycle of a chunked upload session."""

    COLLECTING = "collecting"  # Chunks still arriving
    COMPLETED = "completed"  # Finalized, provisional record created


class UploadKind(str, Enum):
    """What the uploaded object is for."""

    VIDEO = "video"
    FILE = "file"


class AssemblyPhase(str, Enum):
    """Coarse-grained state of one assembly run, polled by the UI."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    GENERATING_THUMBNAIL = "generating_thumbnail"
    COMPLETE = "complete"
    FAILED = "failed"


class TranscodeStatus(str, Enum):
    """Adaptive-bitrate transcode state of a video."""

    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadSession:
    """Chunked upload session, owned by the upload subsystem."""

    id: int
    session_token: str
    user_id: int
    filename: str
    mime_type: str
    file_size: int
    upload_type: UploadKind = UploadKind.FILE
    status: UploadStatus = UploadStatus.COLLECTING
    assembly_phase: AssemblyPhase = AssemblyPhase.IDLE
    assembly_progress: int = 0
    assembly_total_chunks: int = 0
    assembly_started_at: Optional[datetime] = None
    final_file_key: Optional[str] = None
    final_file_url: Optional[str] = None


@dataclass(frozen=True)
class Chunk:
    """One stored fragment of an upload session."""

    session_id: int
    chunk_index: int
    storage_key: str
    size_bytes: int = 0


@dataclass
class MediaRecord:
    """File row created before assembly with the temporary streaming URL."""

    id: int
    user_id: int
    filename: str
    mime_type: str
    file_key: str
    url: str
    file_size: int = 0
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None


@dataclass
class VideoRecord:
    """Video projection of a MediaRecord sharing its final URL."""

    id: int
    file_id: int
    user_id: int
    filename: str
    file_key: str
    url: str
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    transcode_status: TranscodeStatus = TranscodeStatus.NONE


@dataclass
class SessionPatch:
    """Partial update of an UploadSession's assembly fields."""

    assembly_phase: Optional[AssemblyPhase] = None
    assembly_progress: Optional[int] = None
    assembly_total_chunks: Optional[int] = None
    assembly_started_at: Optional[datetime] = None
    final_file_key: Optional[str] = None
    final_file_url: Optional[str] = None


@dataclass
class FilePatch:
    """Partial update of a MediaRecord."""

    file_key: Optional[str] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None


@dataclass
class VideoPatch:
    """Partial update of a VideoRecord."""

    file_key: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    transcode_status: Optional[TranscodeStatus] = None


T = TypeVar("T")


def apply_patch(target: T, patch) -> T:
    """Copy every non-None field of ``patch`` onto ``target``.

    Returns the mutated target for convenience.
    """
    for field in fields(patch):
        value = getattr(patch, field.name)
        if value is not None:
            setattr(target, field.name, value)
    return target


@dataclass(frozen=True)
class StoredObject:
    """Key and readable URL of an object in object storage."""

    key: str
    url: str


@dataclass(frozen=True)
class VideoMetadata:
    """Probe results for a video."""

    duration: int
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    audio_codec: Optional[str] = None
    bitrate: Optional[int] = None
    fps: Optional[float] = None


@dataclass(frozen=True)
class Thumbnail:
    url: str
    key: str


@dataclass(frozen=True)
class TranscodeResult:
    success: bool
    master_playlist_url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AssemblyRequest:
    """Arguments of one assembly run."""

    session_token: str
    session_id: int
    user_id: int
    file_id: int
    video_id: Optional[int]
    filename: str
    mime_type: str
    upload_type: UploadKind = UploadKind.FILE


def is_video_mime_type(mime_type: str | None) -> bool:
    """Whether a MIME type names a video container."""
    return bool(mime_type) and mime_type.lower().startswith("video/")


def is_absolute_http_url(url: str | None) -> bool:
    return bool(url) and (url.startswith("http://") or url.startswith("https://"))
