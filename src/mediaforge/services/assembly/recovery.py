"""Startup scan for sessions still served through their streaming URL."""

import logging
from typing import List, Tuple

from mediaforge.core.config import settings
from mediaforge.models.assembly import AssemblyRequest, UploadStatus
from mediaforge.services.assembly.assembler import ChunkAssembler
from mediaforge.storage.upload_store import RecordStore

logger = logging.getLogger(__name__)


async def find_pending_sessions(records: RecordStore) -> List[Tuple[int, AssemblyRequest]]:
    """Completed sessions whose file record still points at the streaming URL.

    Returns:
        (declared size in bytes, assembly request) pairs
    """
    pending: List[Tuple[int, AssemblyRequest]] = []
    for session in await records.list_sessions(UploadStatus.COMPLETED):
        file_record = await records.find_file_by_url(settings.stream_url_for(session.session_token))
        if file_record is None:
            continue
        video_record = await records.find_video_by_file(file_record.id)
        request = AssemblyRequest(
            session_token=session.session_token,
            session_id=session.id,
            user_id=session.user_id,
            file_id=file_record.id,
            video_id=video_record.id if video_record else None,
            filename=session.filename,
            mime_type=session.mime_type,
            upload_type=session.upload_type,
        )
        pending.append((session.file_size, request))
    return pending


async def recover_pending_sessions(
    assembler: ChunkAssembler,
    records: RecordStore,
    max_assembly_bytes: int | None = None,
) -> int:
    """Re-submit unassembled sessions one at a time.

    Returns:
        Number of sessions handed to the assembler
    """
    max_assembly_bytes = max_assembly_bytes or settings.max_assembly_bytes
    submitted = 0
    try:
        pending = await find_pending_sessions(records)
        if not pending:
            logger.info("No pending sessions need assembly")
            return 0

        logger.info("Found sessions needing assembly", extra={"count": len(pending)})
        for declared_size, request in pending:
            if declared_size > max_assembly_bytes:
                logger.info(
                    "Skipping session above assembly limit",
                    extra={
                        "session_token": request.session_token,
                        "size_mb": round(declared_size / 1024 / 1024, 1),
                    },
                )
                continue

            # One at a time, never in parallel
            await assembler.assemble(request)
            submitted += 1
    except Exception as e:
        logger.error("Error scanning for pending sessions", extra={"error": str(e)}, exc_info=True)

    return submitted
