"""
Event models for upload progress streams.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shared_schemas.video_service import ProgressEventType


@dataclass
class ProgressEvent:
    """Single event in an upload's SSE stream."""

    event_type: ProgressEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    @property
    def is_terminal(self) -> bool:
        return self.event_type in (
            ProgressEventType.COMPLETE,
            ProgressEventType.ERROR,
            ProgressEventType.CLOSE,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON payload with the `type` discriminator first."""
        return {"type": self.event_type.value, **self.data}

    def to_sse(self) -> Dict[str, str]:
        """
        Convert to the dict form EventSourceResponse sends.

        Returns:
            {"data": <json>} (unnamed SSE message)
        """
        return {"data": json.dumps(self.to_payload())}

    @classmethod
    def connected(cls, upload_id: str) -> "ProgressEvent":
        """Create CONNECTED acknowledgement."""
        return cls(event_type=ProgressEventType.CONNECTED, data={"uploadId": upload_id})

    @classmethod
    def progress(cls, upload_id: str, bytes_uploaded: int, total_bytes: int) -> "ProgressEvent":
        """Create PROGRESS event. An empty file counts as fully uploaded."""
        if total_bytes > 0:
            percent = round(bytes_uploaded / total_bytes * 100)
        else:
            percent = 100
        return cls(
            event_type=ProgressEventType.PROGRESS,
            data={
                "uploadId": upload_id,
                "progress": percent,
                "bytesUploaded": bytes_uploaded,
                "totalBytes": total_bytes,
            }
        )

    @classmethod
    def complete(cls, upload_id: str, result: Dict[str, Any]) -> "ProgressEvent":
        """Create COMPLETE event carrying links and final file details."""
        return cls(event_type=ProgressEventType.COMPLETE, data={"uploadId": upload_id, **result})

    @classmethod
    def error(cls, upload_id: str, message: str, details: Optional[str] = None) -> "ProgressEvent":
        """Create ERROR event with a user-safe message."""
        data = {"uploadId": upload_id, "error": message}
        if details:
            data["details"] = details
        return cls(event_type=ProgressEventType.ERROR, data=data)

    @classmethod
    def close(cls) -> "ProgressEvent":
        """Create CLOSE signal; the stream ends after it."""
        return cls(event_type=ProgressEventType.CLOSE)
