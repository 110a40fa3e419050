"""API request/response models for the assembly endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from mediaforge.models.assembly import AssemblyPhase


class AssemblyStatusResponse(BaseModel):
    """Polling view of one session's assembly state."""

    session_token: str
    phase: AssemblyPhase
    progress: int
    total_chunks: int
    started_at: Optional[datetime] = None
    final_file_url: Optional[str] = None
    in_progress: bool


class AssemblyTriggerResponse(BaseModel):
    """Response model for scheduling an assembly run."""

    session_token: str
    scheduled: bool
    message: str
