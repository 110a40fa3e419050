"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock

import httpx
import pytest

from mediaforge.models.assembly import (
    AssemblyRequest,
    Chunk,
    MediaRecord,
    StoredObject,
    UploadKind,
    UploadSession,
    UploadStatus,
    VideoRecord,
)
from mediaforge.services.assembly.assembler import ChunkAssembler
from mediaforge.services.assembly.chunks import ChunkStore
from mediaforge.services.assembly.orchestrator import PostProcessor
from mediaforge.services.assembly.registry import JobRegistry
from mediaforge.services.assembly.uploader import ObjectUploader
from mediaforge.storage.base import ObjectStorage
from mediaforge.storage.upload_store import InMemoryRecordStore

CDN = "https://cdn.example.com"


class MemoryObjectStorage(ObjectStorage):
    """Object storage double that keeps objects in a dict."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, key, data, content_type):
        self.objects[key] = (data, content_type)
        return StoredObject(key=key, url=f"{CDN}/{key}")

    async def get(self, key):
        return StoredObject(key=key, url=f"{CDN}/{key}")

    def get_backend_name(self):
        return "memory"


class ChunkServer:
    """httpx handler serving chunk bytes, with scripted transient failures."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.lstrip("/")
        self.requests.append(key)
        if self.failures.get(key, 0) > 0:
            self.failures[key] -= 1
            return httpx.Response(503)
        if key not in self.blobs:
            return httpx.Response(404)
        return httpx.Response(200, content=self.blobs[key])


class RecordingStore(InMemoryRecordStore):
    """In-memory store that also remembers every session patch."""

    def __init__(self):
        super().__init__()
        self.session_patches = []

    async def update_session(self, session_id, patch):
        self.session_patches.append(patch)
        await super().update_session(session_id, patch)

    def phases(self):
        return [p.assembly_phase for p in self.session_patches if p.assembly_phase is not None]


@pytest.fixture
def records():
    return RecordingStore()


@pytest.fixture
def objects():
    return MemoryObjectStorage()


@pytest.fixture
def chunk_server():
    return ChunkServer()


@pytest.fixture
def spool_dir(tmp_path):
    path = tmp_path / "spool"
    path.mkdir()
    return path


def seed_upload(
    records,
    chunk_server,
    chunk_sizes,
    token="tok-123",
    mime_type="image/png",
    filename="photo.png",
    upload_type=UploadKind.FILE,
    with_video=False,
):
    """Create a finalized session, its chunks and the provisional records."""
    payloads = [bytes([i % 251]) * size for i, size in enumerate(chunk_sizes)]
    session = UploadSession(
        id=1,
        session_token=token,
        user_id=7,
        filename=filename,
        mime_type=mime_type,
        file_size=sum(chunk_sizes),
        upload_type=upload_type,
        status=UploadStatus.COMPLETED,
    )
    records.add_session(session)
    for index, payload in enumerate(payloads):
        key = f"chunks/{token}/{index}"
        chunk_server.blobs[key] = payload
        records.add_chunk(Chunk(session_id=1, chunk_index=index, storage_key=key, size_bytes=len(payload)))

    stream_url = f"/api/files/stream/{token}"
    records.add_file(
        MediaRecord(id=10, user_id=7, filename=filename, mime_type=mime_type, file_key=stream_url, url=stream_url)
    )
    video_id = None
    if with_video:
        video_id = 20
        records.add_video(
            VideoRecord(id=20, file_id=10, user_id=7, filename=filename, file_key=stream_url, url=stream_url)
        )

    request = AssemblyRequest(
        session_token=token,
        session_id=1,
        user_id=7,
        file_id=10,
        video_id=video_id,
        filename=filename,
        mime_type=mime_type,
        upload_type=upload_type,
    )
    return request, b"".join(payloads)


@pytest.fixture
def make_assembler(records, objects, chunk_server, spool_dir):
    """Build an assembler wired to in-memory collaborators with no delays."""

    def _make(**overrides):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(chunk_server))
        chunks = ChunkStore(records, objects, http_client=http_client, backoff_seconds=0)
        post_processor = overrides.pop("post_processor", None) or PostProcessor(
            records,
            objects,
            transcoder=overrides.pop("transcoder", AsyncMock()),
            registry=JobRegistry("transcode-test"),
            settle_delay_seconds=0,
            probe=overrides.pop("probe", AsyncMock(return_value=None)),
            thumbnailer=overrides.pop("thumbnailer", AsyncMock(return_value=None)),
        )
        uploader = overrides.pop("uploader", None) or ObjectUploader(objects, retry_delay_seconds=0)
        return ChunkAssembler(
            records=records,
            chunks=chunks,
            uploader=uploader,
            post_processor=post_processor,
            registry=overrides.pop("registry", JobRegistry("assembly-test")),
            spool_dir=str(spool_dir),
            notifier=overrides.pop("notifier", AsyncMock()),
            **overrides,
        )

    return _make


@pytest.fixture
def seed(records, chunk_server):
    """Seed a finalized upload; returns (AssemblyRequest, assembled bytes)."""

    def _seed(chunk_sizes, **kwargs):
        return seed_upload(records, chunk_server, chunk_sizes, **kwargs)

    return _seed
