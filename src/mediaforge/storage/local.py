"""Local filesystem object storage backend."""

import asyncio
from pathlib import Path

from mediaforge.core.config import settings
from mediaforge.models.assembly import StoredObject
from mediaforge.storage.base import ObjectStorage


class LocalObjectStorage(ObjectStorage):
    """Stores objects on disk and serves them under LOCAL_PUBLIC_BASE_URL."""

    def __init__(self, base_path: str | Path | None = None, public_base_url: str | None = None):
        self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)
        self.public_base_url = (public_base_url or settings.LOCAL_PUBLIC_BASE_URL).rstrip("/")

    def _path_for(self, key: str) -> Path:
        return self.base_path / self.normalize_key(key)

    def _url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{self.normalize_key(key)}"

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Write object bytes under the base path."""
        target_path = self._path_for(key)

        def _write() -> None:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(data)

        await asyncio.to_thread(_write)
        return StoredObject(key=self.normalize_key(key), url=self._url_for(key))

    async def get(self, key: str) -> StoredObject:
        return StoredObject(key=self.normalize_key(key), url=self._url_for(key))

    def get_backend_name(self) -> str:
        return "local"
