"""Relational record store used by the assembly pipeline."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from mediaforge.models.assembly import (
    Chunk,
    FilePatch,
    MediaRecord,
    SessionPatch,
    UploadSession,
    UploadStatus,
    VideoPatch,
    VideoRecord,
    apply_patch,
)


class RecordStore(ABC):
    """Reads and writes the session, chunk, file and video rows this pipeline touches."""

    @abstractmethod
    async def get_session_by_token(self, session_token: str) -> Optional[UploadSession]:
        pass

    @abstractmethod
    async def list_sessions(self, status: UploadStatus) -> List[UploadSession]:
        pass

    @abstractmethod
    async def update_session(self, session_id: int, patch: SessionPatch) -> None:
        pass

    @abstractmethod
    async def list_chunks(self, session_id: int) -> List[Chunk]:
        """Return a session's chunks ordered by ascending index."""
        pass

    @abstractmethod
    async def get_file(self, file_id: int) -> Optional[MediaRecord]:
        pass

    @abstractmethod
    async def find_file_by_url(self, url: str) -> Optional[MediaRecord]:
        pass

    @abstractmethod
    async def update_file(self, file_id: int, patch: FilePatch) -> None:
        pass

    @abstractmethod
    async def get_video(self, video_id: int) -> Optional[VideoRecord]:
        pass

    @abstractmethod
    async def find_video_by_file(self, file_id: int) -> Optional[VideoRecord]:
        pass

    @abstractmethod
    async def update_video(self, video_id: int, patch: VideoPatch) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """In-memory store for upload sessions, chunks and media records."""

    def __init__(self):
        self._sessions: Dict[int, UploadSession] = {}
        self._chunks: Dict[int, List[Chunk]] = {}
        self._files: Dict[int, MediaRecord] = {}
        self._videos: Dict[int, VideoRecord] = {}

    def add_session(self, session: UploadSession) -> None:
        self._sessions[session.id] = session

    def add_chunk(self, chunk: Chunk) -> None:
        self._chunks.setdefault(chunk.session_id, []).append(chunk)

    def add_file(self, record: MediaRecord) -> None:
        self._files[record.id] = record

    def add_video(self, record: VideoRecord) -> None:
        self._videos[record.id] = record

    async def get_session_by_token(self, session_token: str) -> Optional[UploadSession]:
        for session in self._sessions.values():
            if session.session_token == session_token:
                return session
        return None

    async def list_sessions(self, status: UploadStatus) -> List[UploadSession]:
        return [s for s in self._sessions.values() if s.status == status]

    async def update_session(self, session_id: int, patch: SessionPatch) -> None:
        if session_id in self._sessions:
            apply_patch(self._sessions[session_id], patch)

    async def list_chunks(self, session_id: int) -> List[Chunk]:
        return sorted(self._chunks.get(session_id, []), key=lambda c: c.chunk_index)

    async def get_file(self, file_id: int) -> Optional[MediaRecord]:
        return self._files.get(file_id)

    async def find_file_by_url(self, url: str) -> Optional[MediaRecord]:
        for record in self._files.values():
            if record.url == url:
                return record
        return None

    async def update_file(self, file_id: int, patch: FilePatch) -> None:
        if file_id in self._files:
            apply_patch(self._files[file_id], patch)

    async def get_video(self, video_id: int) -> Optional[VideoRecord]:
        return self._videos.get(video_id)

    async def find_video_by_file(self, file_id: int) -> Optional[VideoRecord]:
        for record in self._videos.values():
            if record.file_id == file_id:
                return record
        return None

    async def update_video(self, video_id: int, patch: VideoPatch) -> None:
        if video_id in self._videos:
            apply_patch(self._videos[video_id], patch)


# Singleton instance
record_store = InMemoryRecordStore()
