"""Custom exceptions for the assembly pipeline."""


class AssemblyException(Exception):
    """Base exception for the assembly pipeline."""
    pass


class ChunkFetchError(AssemblyException):
    """Exception raised when a chunk cannot be fetched."""

    def __init__(self, message: str, chunk_index: int | None = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class StorageError(AssemblyException):
    """Exception raised when object storage operations fail."""
    pass


class UploadTransportError(AssemblyException):
    """Exception raised when the streamed upload fails or returns no URL."""
    pass


class ProbeError(AssemblyException):
    """Exception raised when video metadata extraction fails."""
    pass


class ThumbnailError(AssemblyException):
    """Exception raised when thumbnail extraction fails."""
    pass


class TranscodeError(AssemblyException):
    """Exception raised when the transcode backend call fails."""
    pass
