"""
Upload session data models for internal use.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from shared_schemas.video_service import UploadState
from app.models.events import ProgressEvent


@dataclass
class UploadSession:
    """One in-flight upload. Never persisted."""

    upload_id: str
    user_id: str
    original_name: str
    total_bytes: int

    # Progress (monotonic, as reported by the storage layer)
    bytes_uploaded: int = 0
    state: UploadState = UploadState.STARTED

    # Result
    video_id: Optional[str] = None
    terminal_event: Optional[ProgressEvent] = None

    # Timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @classmethod
    def create(cls, user_id: str, original_name: str, total_bytes: int) -> "UploadSession":
        """Create a session with a fresh upload id (distinct from the video id)."""
        return cls(
            upload_id=uuid.uuid4().hex,
            user_id=user_id,
            original_name=original_name,
            total_bytes=total_bytes
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in (UploadState.COMPLETED, UploadState.FAILED)

    @property
    def progress_percent(self) -> int:
        if self.total_bytes <= 0:
            return 100 if self.is_terminal else 0
        return round(self.bytes_uploaded / self.total_bytes * 100)

    def advance(self, bytes_uploaded: int) -> int:
        """Record progress, never moving backwards. Returns the stored value."""
        if self.is_terminal:
            return self.bytes_uploaded
        self.bytes_uploaded = max(self.bytes_uploaded, min(bytes_uploaded, self.total_bytes))
        self.state = UploadState.IN_PROGRESS
        return self.bytes_uploaded

    def mark_completed(self, video_id: str, event: ProgressEvent):
        self.video_id = video_id
        self.bytes_uploaded = self.total_bytes
        self.state = UploadState.COMPLETED
        self.terminal_event = event
        self.finished_at = datetime.now(timezone.utc)

    def mark_failed(self, event: ProgressEvent):
        self.state = UploadState.FAILED
        self.terminal_event = event
        self.finished_at = datetime.now(timezone.utc)

    def is_expired(self, retention_seconds: int) -> bool:
        """Terminal and kept longer than the retention window."""
        if not self.is_terminal or self.finished_at is None:
            return False
        elapsed = (datetime.now(timezone.utc) - self.finished_at).total_seconds()
        return elapsed > retention_seconds
