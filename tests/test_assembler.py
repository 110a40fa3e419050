"""End-to-end tests for background chunk assembly."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from mediaforge.models.assembly import (
    AssemblyPhase,
    Thumbnail,
    TranscodeResult,
    TranscodeStatus,
    UploadKind,
    VideoMetadata,
)
from mediaforge.services.assembly.assembler import build_final_key, schedule_assembly
from mediaforge.services.assembly.exceptions import UploadTransportError
from mediaforge.services.assembly.registry import JobRegistry
from mediaforge.services.assembly.timeouts import hard_timeout_seconds, timeout_seconds
from mediaforge.services.assembly.uploader import ObjectUploader

KIB = 1024
STREAM_URL = "/api/files/stream/tok-123"


class FakeTransport:
    """Streaming transport double replaying scripted outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def send(self, spool_path, key, mime_type, soft_timeout, hard_timeout):
        self.calls.append(
            {"key": key, "size": spool_path.stat().st_size, "soft_timeout": soft_timeout, "hard_timeout": hard_timeout}
        )
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_build_final_key_layout():
    key = build_final_key(7, UploadKind.VIDEO, "My Clip.mp4")

    prefix, rest = key.split("/", 1)
    folder, name = rest.split("/", 1)
    timestamp, suffix, filename = name.split("-", 2)
    assert prefix == "user-7"
    assert folder == "videos"
    assert timestamp.isdigit()
    assert len(suffix) == 6
    assert filename == "My_Clip.mp4"
    assert build_final_key(7, "file", "a.pdf").startswith("user-7/files/")


@pytest.mark.asyncio
async def test_small_image_assembles_through_buffered_put(make_assembler, seed, records, objects, spool_dir):
    request, expected = seed([100 * KIB, 100 * KIB, 100 * KIB])
    assembler = make_assembler()

    await assembler.assemble(request)

    assert records.phases() == [AssemblyPhase.DOWNLOADING, AssemblyPhase.UPLOADING, AssemblyPhase.COMPLETE]
    file_record = await records.get_file(10)
    assert file_record.url.startswith("https://")
    assert objects.objects[file_record.file_key] == (expected, "image/png")
    session = await records.get_session_by_token("tok-123")
    assert session.final_file_url == file_record.url
    assert session.final_file_key == file_record.file_key
    assert session.assembly_progress == 3
    assert session.assembly_total_chunks == 3
    assert session.assembly_started_at is not None
    assert list(spool_dir.iterdir()) == []
    assert not assembler.is_in_progress("tok-123")


@pytest.mark.asyncio
async def test_transient_chunk_failures_are_retried(make_assembler, seed, records, objects, chunk_server):
    request, expected = seed([10, 20, 30])
    for index in range(3):
        chunk_server.failures[f"chunks/tok-123/{index}"] = 2
    assembler = make_assembler()

    await assembler.assemble(request)

    assert records.phases()[-1] == AssemblyPhase.COMPLETE
    session = await records.get_session_by_token("tok-123")
    assert session.assembly_progress == 3
    file_record = await records.get_file(10)
    assert objects.objects[file_record.file_key][0] == expected
    assert len(chunk_server.requests) == 9


@pytest.mark.asyncio
async def test_exhausted_chunk_retries_fail_the_run(make_assembler, seed, records, objects, chunk_server, spool_dir):
    request, _ = seed([10, 20, 30])
    chunk_server.failures["chunks/tok-123/1"] = 3
    assembler = make_assembler()

    await assembler.assemble(request)

    assert records.phases() == [AssemblyPhase.DOWNLOADING, AssemblyPhase.FAILED]
    assert (await records.get_file(10)).url == STREAM_URL
    assert (await records.get_session_by_token("tok-123")).final_file_url is None
    assert objects.objects == {}
    assert list(spool_dir.iterdir()) == []
    assert "chunks/tok-123/2" not in chunk_server.requests
    assert not assembler.is_in_progress("tok-123")


@pytest.mark.asyncio
async def test_concurrent_triggers_run_once(make_assembler, seed, records, chunk_server):
    request, _ = seed([10, 20, 30])
    assembler = make_assembler()

    await asyncio.gather(assembler.assemble(request), assembler.assemble(request))

    assert len(chunk_server.requests) == 3
    assert records.phases().count(AssemblyPhase.DOWNLOADING) == 1
    assert records.phases()[-1] == AssemblyPhase.COMPLETE


@pytest.mark.asyncio
async def test_trigger_while_token_held_is_noop(make_assembler, seed, records, chunk_server):
    request, _ = seed([10])
    registry = JobRegistry("assembly-test")
    registry.try_acquire("tok-123")
    assembler = make_assembler(registry=registry)

    await assembler.assemble(request)

    assert chunk_server.requests == []
    assert records.session_patches == []
    assert registry.is_active("tok-123")


@pytest.mark.asyncio
async def test_oversized_assembly_keeps_streaming_url(make_assembler, seed, records, objects, spool_dir):
    request, _ = seed([100, 100, 100])
    assembler = make_assembler(max_assembly_bytes=200)

    await assembler.assemble(request)

    assert records.phases() == [AssemblyPhase.DOWNLOADING, AssemblyPhase.FAILED]
    assert (await records.get_file(10)).url == STREAM_URL
    assert objects.objects == {}
    assert list(spool_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_progress_is_persisted_every_interval(make_assembler, seed, records):
    request, _ = seed([8] * 12)
    assembler = make_assembler()

    await assembler.assemble(request)

    progress = [p.assembly_progress for p in records.session_patches if p.assembly_progress is not None]
    assert progress == [0, 5, 10, 12]


@pytest.mark.asyncio
async def test_large_video_streams_and_post_processes(make_assembler, seed, records, objects, chunk_server):
    request, expected = seed(
        [64, 64, 64],
        mime_type="video/mp4",
        filename="clip.mp4",
        upload_type=UploadKind.VIDEO,
        with_video=True,
    )
    chunk_server.failures["chunks/tok-123/1"] = 1
    final_url = "https://cdn.example.com/user-7/videos/clip.mp4"
    transport = FakeTransport(UploadTransportError("curl exited with code 28"), {"url": final_url})
    uploader = ObjectUploader(objects, transport=transport, memory_limit_bytes=100, retry_delay_seconds=0)
    transcoder = AsyncMock()
    transcoder.transcode.return_value = TranscodeResult(success=True)
    assembler = make_assembler(
        uploader=uploader,
        transcoder=transcoder,
        probe=AsyncMock(return_value=VideoMetadata(duration=62, width=1280, height=720)),
        thumbnailer=AsyncMock(return_value=Thumbnail(url="https://cdn.example.com/t.jpg", key="user-7/thumbnails/t.jpg")),
    )

    with patch(
        "mediaforge.services.assembly.uploader.timeout_seconds", wraps=timeout_seconds
    ) as size_timeout:
        await assembler.assemble(request)
    await assembler.post_processor.drain()

    assert records.phases() == [
        AssemblyPhase.DOWNLOADING,
        AssemblyPhase.UPLOADING,
        AssemblyPhase.GENERATING_THUMBNAIL,
        AssemblyPhase.COMPLETE,
    ]
    assert objects.objects == {}
    assert len(transport.calls) == 2
    assert transport.calls[0]["size"] == len(expected)
    assert transport.calls[0]["key"].startswith("user-7/videos/")
    assert transport.calls[0]["key"].endswith("-clip.mp4")
    size_timeout.assert_called_with(len(expected))
    assert transport.calls[0]["soft_timeout"] == timeout_seconds(len(expected))
    assert transport.calls[0]["hard_timeout"] == hard_timeout_seconds(len(expected))
    assert chunk_server.requests.count("chunks/tok-123/1") == 2
    assert (await records.get_session_by_token("tok-123")).assembly_progress == 3

    video = await records.get_video(20)
    assert video.url == final_url
    assert (video.duration, video.width, video.height) == (62, 1280, 720)
    assert video.thumbnail_url == "https://cdn.example.com/t.jpg"
    assert video.transcode_status == TranscodeStatus.PENDING
    assert (await records.get_file(10)).thumbnail_key == "user-7/thumbnails/t.jpg"
    transcoder.transcode.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_streamed_upload_marks_failed(make_assembler, seed, records, objects):
    request, _ = seed([64, 64], mime_type="video/mp4", filename="clip.mp4", upload_type=UploadKind.VIDEO)
    transport = FakeTransport(UploadTransportError("hard timeout"), UploadTransportError("hard timeout"))
    uploader = ObjectUploader(objects, transport=transport, memory_limit_bytes=100, retry_delay_seconds=0)
    assembler = make_assembler(uploader=uploader)

    await assembler.assemble(request)

    assert records.phases() == [AssemblyPhase.DOWNLOADING, AssemblyPhase.UPLOADING, AssemblyPhase.FAILED]
    assert (await records.get_file(10)).url == STREAM_URL
    assert not assembler.is_in_progress("tok-123")


@pytest.mark.asyncio
async def test_non_video_skips_post_processing(make_assembler, seed):
    request, _ = seed([10])
    probe = AsyncMock()
    thumbnailer = AsyncMock()
    assembler = make_assembler(probe=probe, thumbnailer=thumbnailer)

    await assembler.assemble(request)

    probe.assert_not_awaited()
    thumbnailer.assert_not_awaited()


@pytest.mark.asyncio
async def test_notifier_failure_is_non_fatal(make_assembler, seed, records):
    request, expected = seed([10, 10])
    notifier = AsyncMock(side_effect=RuntimeError("notification service down"))
    assembler = make_assembler(notifier=notifier)

    await assembler.assemble(request)

    assert records.phases()[-1] == AssemblyPhase.COMPLETE
    args = notifier.call_args.args
    assert args[:3] == (7, "photo.png", len(expected))


@pytest.mark.asyncio
async def test_session_without_chunks_is_noop(make_assembler, seed, records):
    request, _ = seed([])
    assembler = make_assembler()

    await assembler.assemble(request)

    assert records.session_patches == []
    assert not assembler.is_in_progress("tok-123")


@pytest.mark.asyncio
async def test_schedule_assembly_runs_in_background(make_assembler, seed, records):
    request, _ = seed([10, 10])
    assembler = make_assembler()

    task = schedule_assembly(assembler, request)
    await task

    assert task.get_name() == "assembly-tok-123"
    assert records.phases()[-1] == AssemblyPhase.COMPLETE
