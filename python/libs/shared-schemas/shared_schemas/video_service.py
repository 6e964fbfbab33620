"""
Video Upload Service API schemas.
Type-safe contracts for all video service endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from shared_schemas.common import CamelModel


# ============================================================================
# Enums
# ============================================================================

class UploadState(str, Enum):
    """Upload session lifecycle state."""
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressEventType(str, Enum):
    """Progress stream message types (the `type` discriminator)."""
    CONNECTED = "connected"    # Subscription acknowledged
    PROGRESS = "progress"      # Bytes transferred so far
    COMPLETE = "complete"      # Upload stored, links available
    ERROR = "error"            # Upload failed (user-safe message)
    CLOSE = "close"            # Stream ends after this


# ============================================================================
# Upload Endpoints
# ============================================================================

class UploadStartedResponse(CamelModel):
    """Immediate response to POST /upload; the transfer continues in the background."""
    success: bool = True
    upload_id: str
    message: str = "Upload started"
    progress_url: str


class UploaderQuota(CamelModel):
    """Uploader quota snapshot attached to the complete event."""
    username: str
    quota_used: int
    quota_remaining: int


class UploadCompletePayload(CamelModel):
    """Payload of the terminal `complete` progress event."""
    id: str
    share_link: str
    download_url: str
    preview_url: str
    filename: str
    size: int
    content_type: str
    file_format: str
    warning: Optional[str] = None
    user: Optional[UploaderQuota] = None


# ============================================================================
# Video Endpoints
# ============================================================================

class UploaderInfo(CamelModel):
    """Denormalized uploader details."""
    id: str
    username: str
    avatar: str = ""


class VideoResponse(CamelModel):
    """Share-page data for one video."""
    id: str
    original_name: str
    size: int
    content_type: str
    file_format: str
    upload_date: datetime
    uploader: UploaderInfo
    share_link: str
    stream_url: str
    download_url: str
    download_count: int = 0
    views: int = 0
    share_count: int = 0
    is_legacy_container: bool = False


class ClipSummary(CamelModel):
    """One entry in the clip listing."""
    id: str
    original_name: str
    size: int
    upload_date: datetime
    share_link: str
    username: str
    user_avatar: str = ""


class ClipListResponse(CamelModel):
    """All clips, newest first."""
    clips: List[ClipSummary]
    total: int


class CounterResponse(CamelModel):
    """Result of an analytics counter update."""
    success: bool = True
    id: str
    views: int
    shares: int
    downloads: int


# ============================================================================
# Quota Endpoints
# ============================================================================

class QuotaResponse(CamelModel):
    """Storage usage of the authenticated caller."""
    quota: int
    total_upload_size: int
    remaining_quota: int
    upload_count: int
    usage_percentage: int = Field(..., description="Rounded percentage of quota used")
    last_updated: datetime


class UserUpload(CamelModel):
    """One entry in the caller's upload history."""
    id: str
    original_name: str
    size: int
    upload_date: datetime
    share_link: str


class UserUploadsResponse(CamelModel):
    """The caller's upload history, oldest first, with quota totals."""
    uploads: List[UserUpload]
    total_uploads: int
    total_size: int
    remaining_quota: int


# ============================================================================
# Health Check
# ============================================================================

class HealthCheckResponse(CamelModel):
    """Health check response."""
    status: str
    s3_connection: str
    videos: int = 0
    active_uploads: int = 0
