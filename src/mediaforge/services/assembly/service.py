"""Wiring of the assembly pipeline from settings."""

from typing import Optional

from mediaforge.services.assembly.assembler import ChunkAssembler
from mediaforge.services.assembly.chunks import ChunkStore
from mediaforge.services.assembly.orchestrator import PostProcessor
from mediaforge.services.assembly.uploader import ObjectUploader
from mediaforge.storage.base import ObjectStorage
from mediaforge.storage.factory import get_object_storage
from mediaforge.storage.upload_store import RecordStore, record_store

_assembler: Optional[ChunkAssembler] = None


def build_assembler(
    records: RecordStore | None = None,
    objects: ObjectStorage | None = None,
) -> ChunkAssembler:
    """Build an assembler with every collaborator configured from settings."""
    records = records or record_store
    objects = objects or get_object_storage()
    return ChunkAssembler(
        records=records,
        chunks=ChunkStore(records, objects),
        uploader=ObjectUploader(objects),
        post_processor=PostProcessor(records, objects),
    )


def get_assembler() -> ChunkAssembler:
    """Process-wide assembler instance."""
    global _assembler
    if _assembler is None:
        _assembler = build_assembler()
    return _assembler
