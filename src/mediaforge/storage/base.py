"""Abstract object storage interface."""

import re
from abc import ABC, abstractmethod

from mediaforge.models.assembly import StoredObject


class ObjectStorage(ABC):
    """Abstract base class for object storage backends."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Store an object.

        Args:
            key: Object key (path inside the bucket)
            data: Object content
            content_type: MIME type

        Returns:
            Key and durable URL of the stored object
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> StoredObject:
        """Resolve a readable (possibly presigned) URL for an object.

        Args:
            key: Object key

        Returns:
            Key and a URL the object can be fetched from
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass

    @staticmethod
    def normalize_key(key: str) -> str:
        """Strip leading slashes and path traversal segments from a key."""
        key = key.replace("\\", "/").lstrip("/")
        parts = [part for part in key.split("/") if part not in ("", ".", "..")]
        return "/".join(parts)

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """Remove path traversal and dangerous characters."""
        safe = filename.replace("../", "").replace("..\\", "")
        safe = safe.replace("/", "_").replace("\\", "_")
        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
        return safe[:255]
