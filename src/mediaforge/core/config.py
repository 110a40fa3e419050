"""Configuration management for the MediaForge assembly service."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "mediaforge"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Object Storage Configuration
    STORAGE_BACKEND: str = "local"  # "gcs" or "local"
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    LOCAL_STORAGE_PATH: str = "data/objects"
    LOCAL_PUBLIC_BASE_URL: str = "http://localhost:8000/objects"
    SIGNED_URL_EXPIRATION_MINUTES: int = 15

    # Streaming upload transport (large objects bypass the in-memory put)
    STORAGE_UPLOAD_API_URL: str = ""
    STORAGE_UPLOAD_API_KEY: str = ""
    CURL_PATH: str = "curl"

    # Assembly Configuration
    MAX_ASSEMBLY_SIZE_MB: int = 2048
    MEMORY_UPLOAD_LIMIT_MB: int = 200
    PROGRESS_WRITE_INTERVAL: int = 5  # persist progress every N chunks
    CHUNK_FETCH_MAX_ATTEMPTS: int = 3
    CHUNK_RETRY_BACKOFF_SECONDS: float = 2.5  # multiplied by attempt number
    CHUNK_FETCH_TIMEOUT: int = 120
    SPOOL_DIR: str = ""  # empty = system temp dir
    SPOOL_QUEUE_DEPTH: int = 4
    STREAM_UPLOAD_RETRY_DELAY_SECONDS: float = 10.0
    HARD_TIMEOUT_GRACE_SECONDS: int = 60
    UPLOAD_HEARTBEAT_SECONDS: float = 30.0
    STREAM_URL_PREFIX: str = "/api/files/stream/"
    RECOVERY_ON_STARTUP: bool = True

    # Post-processing Configuration
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    PROBE_TIMEOUT: int = 30
    THUMBNAIL_TIMEOUT: int = 30
    THUMBNAIL_SEEK_SECONDS: int = 1
    THUMBNAIL_WIDTH: int = 640
    THUMBNAIL_QUALITY: int = 5  # ffmpeg -q:v, 2 is best
    TRANSCODE_SERVICE_URL: str = ""
    TRANSCODE_REQUEST_TIMEOUT: int = 30
    TRANSCODE_SETTLE_DELAY_SECONDS: float = 2.0
    TRANSCODE_COLD_START_DELAY_SECONDS: float = 5.0

    # Notifications
    NOTIFICATION_SERVICE_URL: str = ""
    NOTIFICATION_TIMEOUT: int = 5

    @property
    def max_assembly_bytes(self) -> int:
        """Convert MAX_ASSEMBLY_SIZE_MB to bytes."""
        return self.MAX_ASSEMBLY_SIZE_MB * 1024 * 1024

    @property
    def memory_upload_limit_bytes(self) -> int:
        """Convert MEMORY_UPLOAD_LIMIT_MB to bytes."""
        return self.MEMORY_UPLOAD_LIMIT_MB * 1024 * 1024

    def stream_url_for(self, session_token: str) -> str:
        """Temporary server-proxied URL that serves a session before assembly."""
        return f"{self.STREAM_URL_PREFIX}{session_token}"


# Singleton settings instance
settings = Settings()
