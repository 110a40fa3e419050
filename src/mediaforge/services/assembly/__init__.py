"""
Large-object assembly pipeline.

Reassembles chunked uploads into one durable object, uploads it to object
storage and post-processes videos (metadata, thumbnail, transcode trigger).
"""

from mediaforge.services.assembly.assembler import ChunkAssembler, build_final_key, schedule_assembly
from mediaforge.services.assembly.recovery import recover_pending_sessions
from mediaforge.services.assembly.registry import JobRegistry, assembly_jobs, transcode_jobs
from mediaforge.services.assembly.timeouts import hard_timeout_seconds, timeout_seconds

__all__ = [
    "ChunkAssembler",
    "JobRegistry",
    "assembly_jobs",
    "build_final_key",
    "hard_timeout_seconds",
    "recover_pending_sessions",
    "schedule_assembly",
    "timeout_seconds",
    "transcode_jobs",
]
