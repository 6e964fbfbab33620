"""
Error taxonomy for the video service.

Errors raised before the asynchronous upload handoff become HTTP responses
through the exception handler in app.main. Errors raised afterwards are only
reported through the progress channel.
"""

from typing import Optional


class VideoServiceError(Exception):
    """Base error with a user-safe message and an HTTP mapping."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code


class ValidationError(VideoServiceError):
    """Bad or missing fields, unsupported type, oversized request."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class QuotaExceededError(VideoServiceError):
    """Remaining quota is smaller than the declared file size."""

    status_code = 413
    error_code = "QUOTA_EXCEEDED"

    def __init__(self, user_id: str, file_size: int, used: int, remaining: int, quota: int):
        gb = quota / (1024 ** 3)
        super().__init__(f"Your upload quota of {gb:g}GB has been exceeded.")
        self.user_id = user_id
        self.file_size = file_size
        self.used = used
        self.remaining = remaining
        self.quota = quota


class UploadFailed(VideoServiceError):
    """Transfer to object storage failed after retries or on a permanent fault."""

    status_code = 502
    error_code = "UPLOAD_FAILED"


class NotificationFailed(VideoServiceError):
    """Webhook delivery failed. Logged and swallowed by the orchestrator."""

    status_code = 502
    error_code = "NOTIFICATION_FAILED"


class NotFoundError(VideoServiceError):
    """Referenced video or upload id does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"


class StorageUnavailableError(VideoServiceError):
    """Object storage could not serve a read-path request."""

    status_code = 503
    error_code = "STORAGE_UNAVAILABLE"
