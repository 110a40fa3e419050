"""Assembly API routes.

The finalize-upload handler calls the POST hook once a session's provisional
record exists; the UI polls the GET endpoint for phase and progress.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from mediaforge.core.config import settings
from mediaforge.models.api import AssemblyStatusResponse, AssemblyTriggerResponse
from mediaforge.models.assembly import AssemblyRequest, UploadStatus
from mediaforge.services.assembly.assembler import ChunkAssembler, schedule_assembly
from mediaforge.services.assembly.service import get_assembler
from mediaforge.storage.upload_store import RecordStore, record_store

router = APIRouter(prefix="/api/v1/assembly", tags=["assembly"])
logger = logging.getLogger(__name__)


def get_record_store() -> RecordStore:
    return record_store


@router.post(
    "/{session_token}",
    response_model=AssemblyTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_assembly(
    session_token: str,
    records: RecordStore = Depends(get_record_store),
    assembler: ChunkAssembler = Depends(get_assembler),
) -> AssemblyTriggerResponse:
    """Schedule background assembly of a finalized upload session."""
    session = await records.get_session_by_token(session_token)
    if session is None:
        raise HTTPException(status_code=404, detail="Upload session not found")
    if session.status != UploadStatus.COMPLETED:
        raise HTTPException(status_code=409, detail="Upload session is not finalized")

    if assembler.is_in_progress(session_token):
        return AssemblyTriggerResponse(
            session_token=session_token,
            scheduled=False,
            message="Assembly already in progress",
        )

    file_record = await records.find_file_by_url(settings.stream_url_for(session_token))
    if file_record is None:
        if session.final_file_url:
            return AssemblyTriggerResponse(
                session_token=session_token,
                scheduled=False,
                message="Session already assembled",
            )
        raise HTTPException(status_code=404, detail="No file record is served from this session")

    video_record = await records.find_video_by_file(file_record.id)
    request = AssemblyRequest(
        session_token=session_token,
        session_id=session.id,
        user_id=session.user_id,
        file_id=file_record.id,
        video_id=video_record.id if video_record else None,
        filename=session.filename,
        mime_type=session.mime_type,
        upload_type=session.upload_type,
    )
    schedule_assembly(assembler, request)

    logger.info("Assembly scheduled", extra={"session_token": session_token, "file_id": file_record.id})
    return AssemblyTriggerResponse(
        session_token=session_token,
        scheduled=True,
        message="Assembly scheduled",
    )


@router.get("/{session_token}", response_model=AssemblyStatusResponse)
async def get_assembly_status(
    session_token: str,
    records: RecordStore = Depends(get_record_store),
    assembler: ChunkAssembler = Depends(get_assembler),
) -> AssemblyStatusResponse:
    """Return the assembly phase and progress of an upload session."""
    session = await records.get_session_by_token(session_token)
    if session is None:
        raise HTTPException(status_code=404, detail="Upload session not found")

    return AssemblyStatusResponse(
        session_token=session_token,
        phase=session.assembly_phase,
        progress=session.assembly_progress,
        total_chunks=session.assembly_total_chunks,
        started_at=session.assembly_started_at,
        final_file_url=session.final_file_url,
        in_progress=assembler.is_in_progress(session_token),
    )
