"""
Configuration management for Video Upload Service.
Loads environment variables using Pydantic Settings.
"""

from typing import Dict, List, Optional, Union
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MB = 1024 * 1024
GB = 1024 * MB


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Video Upload Service"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    VERBOSE_ERRORS: bool = False  # Adds raw error text to error events (development only)

    # CORS Configuration (will be parsed by model_validator)
    CORS_ORIGINS: Union[str, List[str]] = ["*"]

    # MinIO / S3 Configuration
    MINIO_ENDPOINT: str           # e.g. 192.168.1.100:9000 or https://s3.amazonaws.com
    MINIO_ACCESS_KEY: str
    MINIO_SECRET_KEY: str
    MINIO_SECURE: bool = False    # Set to True for HTTPS
    S3_REGION: str = "us-east-1"
    VIDEO_BUCKET: str = "videos"
    S3_EXECUTOR_WORKERS: int = 16  # Threads shared by all blocking boto3 calls

    # Public URLs
    PUBLIC_SERVICE_URL: str = "http://localhost:8000"  # Base for share/download links
    DEFAULT_SIGNED_URL_EXPIRATION: int = 3600  # 1 hour in seconds

    # Authentication
    INTERNAL_SECRET_KEY: str  # Trusted login gateway / backend services
    FRONTEND_API_KEY: str     # Frontend applications

    # Chunked upload engine
    STREAMING_THRESHOLD_BYTES: int = 50 * MB  # At or above: block upload
    CHUNK_SIZE_BYTES: int = 50 * MB
    MAX_CONCURRENT_BLOCKS: int = 4
    UPLOAD_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 0.5
    RETRY_BACKOFF_MAX_SECONDS: float = 8.0

    # Upload validation
    MAX_FILE_SIZE_BYTES: int = 1 * GB
    ALLOWED_VIDEO_TYPES: Union[str, List[str]] = [
        "video/mp4",
        "video/webm",
        "video/ogg",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-matroska",
        "video/mpeg",
    ]
    STAGING_DIR: Optional[str] = None  # Defaults to the system temp dir

    # Quota
    DEFAULT_USER_QUOTA_BYTES: int = 5 * GB
    USER_QUOTA_OVERRIDES: Union[str, Dict[str, int]] = {}  # Format: "user1:1073741824,user2:..."
    QUOTA_STRICT_MODE: bool = False  # Sum object sizes in storage instead of trusting the cache

    # Upload sessions and progress streams
    UPLOAD_SESSION_RETENTION_SECONDS: int = 300
    SESSION_MONITOR_INTERVAL: int = 30
    PROGRESS_STREAM_TIMEOUT_SECONDS: int = 1800
    SSE_PING_SECONDS: int = 15
    SHUTDOWN_GRACE_SECONDS: int = 30

    # Notifications
    DISCORD_WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    @model_validator(mode="before")
    @classmethod
    def parse_env_values(cls, values):
        """Parse environment variables from strings to proper types."""

        # Parse CORS_ORIGINS from comma-separated string to list
        if isinstance(values.get("CORS_ORIGINS"), str):
            values["CORS_ORIGINS"] = [
                origin.strip() for origin in values["CORS_ORIGINS"].split(",")
            ]

        # Parse ALLOWED_VIDEO_TYPES from comma-separated string to list
        if isinstance(values.get("ALLOWED_VIDEO_TYPES"), str):
            values["ALLOWED_VIDEO_TYPES"] = [
                mime.strip() for mime in values["ALLOWED_VIDEO_TYPES"].split(",") if mime.strip()
            ]

        # Parse USER_QUOTA_OVERRIDES from comma-separated string to dict
        # Format: "user1:1073741824,user2:2147483648"
        if isinstance(values.get("USER_QUOTA_OVERRIDES"), str):
            result = {}
            for pair in values["USER_QUOTA_OVERRIDES"].split(","):
                if not pair.strip():
                    continue
                user_id, quota = pair.rsplit(":", 1)
                result[user_id.strip()] = int(quota.strip())
            values["USER_QUOTA_OVERRIDES"] = result

        return values

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        env_parse_none_str=None,
    )


# Global settings instance
settings = Settings()
