"""
Video Metadata Store - process-wide catalog of VideoRecords.

The in-memory store stands in for a database; storage metadata is the
source of truth and the catalog is rebuilt from it on startup.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from app.core.errors import NotFoundError
from app.models.video import VideoRecord

logger = logging.getLogger(__name__)

COUNTER_FIELDS = ("download_count", "views", "share_count")


class VideoRepository(ABC):
    """Keyed video catalog."""

    @abstractmethod
    def get(self, video_id: str) -> Optional[VideoRecord]:
        ...

    @abstractmethod
    def put(self, record: VideoRecord) -> None:
        ...

    @abstractmethod
    def scan(self) -> List[VideoRecord]:
        ...

    def require(self, video_id: str) -> VideoRecord:
        """Get a record or raise NotFoundError."""
        record = self.get(video_id)
        if record is None:
            raise NotFoundError("Video not found")
        return record


class InMemoryVideoStore(VideoRepository):
    """
    Dict-backed catalog. Last writer wins.

    All methods are synchronous, so each one runs without interleaving on the
    event loop.
    """

    def __init__(self):
        self._videos: Dict[str, VideoRecord] = {}

    def get(self, video_id: str) -> Optional[VideoRecord]:
        return self._videos.get(video_id)

    def put(self, record: VideoRecord) -> None:
        self._videos[record.id] = record

    def scan(self) -> List[VideoRecord]:
        return list(self._videos.values())

    def replace_all(self, records: Iterable[VideoRecord]) -> int:
        """Swap the whole catalog (used by the startup rebuild)."""
        self._videos = {record.id: record for record in records}
        return len(self._videos)

    def clear(self) -> None:
        self._videos.clear()

    def mark_notified(self, video_id: str) -> bool:
        """
        Set the notification sentinel.

        Returns:
            True if this call set it, False if it was already set or the
            record does not exist
        """
        record = self._videos.get(video_id)
        if record is None or record.notification_sent:
            return False
        record.notification_sent = True
        return True

    def increment(self, video_id: str, counter: str) -> VideoRecord:
        """Increment a read-path counter in place."""
        if counter not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {counter}")
        record = self.require(video_id)
        setattr(record, counter, getattr(record, counter) + 1)
        return record

    def __len__(self) -> int:
        return len(self._videos)


# Global video store instance
video_store = InMemoryVideoStore()
