"""Object storage backend selection."""

from mediaforge.core.config import settings
from mediaforge.storage.base import ObjectStorage

_backends: dict[str, ObjectStorage] = {}


def get_object_storage() -> ObjectStorage:
    """Return the configured object storage backend.

    Raises:
        ValueError: If STORAGE_BACKEND names an unknown backend
    """
    name = settings.STORAGE_BACKEND.lower()
    if name not in _backends:
        if name == "gcs":
            from mediaforge.storage.gcs import GCSObjectStorage

            _backends[name] = GCSObjectStorage()
        elif name == "local":
            from mediaforge.storage.local import LocalObjectStorage

            _backends[name] = LocalObjectStorage()
        else:
            raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
    return _backends[name]
