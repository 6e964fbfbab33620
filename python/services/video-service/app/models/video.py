"""
Video catalog models and the object-metadata contract.

Every stored object carries enough user metadata to rebuild its VideoRecord
without any other store. S3 metadata must be ASCII, so free-text values are
percent-encoded.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote, unquote

from app.models.user import User
from app.utils.content_type import get_file_extension


# Metadata keys (stored as x-amz-meta-<key>, always lower-case)
META_VIDEO_ID = "video-id"
META_ORIGINAL_NAME = "original-name"
META_UPLOADED_BY = "uploaded-by"
META_UPLOADER_USERNAME = "uploader-username"
META_UPLOADER_AVATAR = "uploader-avatar"
META_SIZE = "size"
META_CONTENT_TYPE = "content-type"
META_UPLOAD_DATE = "upload-date"
META_DOWNLOAD_COUNT = "download-count"
META_FILE_FORMAT = "file-format"
META_IS_LEGACY = "is-legacy-container"

# S3 rejects user metadata above 2 KB
MAX_METADATA_BYTES = 2048
MAX_ENCODED_NAME_BYTES = 1024


@dataclass
class StorageLocator:
    """Where a video lives in object storage."""

    bucket: str
    key: str
    url: str


@dataclass
class UploadSummary:
    """Lightweight entry in a user's upload history."""

    id: str
    original_name: str
    size: int
    upload_date: datetime
    share_link: str


def build_object_metadata(
    video_id: str,
    original_name: str,
    uploader: User,
    size: int,
    content_type: str,
    upload_date: datetime,
    file_format: str,
    is_legacy_container: bool,
    download_count: int = 0
) -> Dict[str, str]:
    """Build the user metadata attached to a stored video object."""
    return {
        META_VIDEO_ID: video_id,
        META_ORIGINAL_NAME: quote(original_name, safe=""),
        META_UPLOADED_BY: quote(uploader.id, safe=""),
        META_UPLOADER_USERNAME: quote(uploader.username or "", safe=""),
        META_UPLOADER_AVATAR: quote(uploader.avatar or "", safe=""),
        META_SIZE: str(size),
        META_CONTENT_TYPE: content_type,
        META_UPLOAD_DATE: upload_date.isoformat(),
        META_DOWNLOAD_COUNT: str(download_count),
        META_FILE_FORMAT: file_format,
        META_IS_LEGACY: "true" if is_legacy_container else "false",
    }


def metadata_size(metadata: Dict[str, str]) -> int:
    """Bytes counted against the storage user-metadata limit (UTF-8 keys plus values)."""
    return sum(len(key.encode()) + len(value.encode()) for key, value in metadata.items())


def estimate_metadata_size(original_name: str, uploader: User, size: int, content_type: str) -> int:
    """Size of the metadata an upload of this file by this user will carry."""
    file_format = get_file_extension(original_name)
    return metadata_size(build_object_metadata(
        video_id="0" * 32,
        original_name=original_name,
        uploader=uploader,
        size=size,
        content_type=content_type,
        upload_date=datetime.now(timezone.utc),
        file_format=file_format,
        is_legacy_container=False
    ))


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_date(value: Optional[str], fallback: Optional[datetime]) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return fallback or datetime.now(timezone.utc)


@dataclass
class VideoRecord:
    """One stored video. Created when its upload completes."""

    id: str
    original_name: str
    size: int
    content_type: str
    file_format: str
    locator: StorageLocator
    uploaded_by: str
    uploader_username: str
    uploader_avatar: str
    upload_date: datetime
    is_legacy_container: bool = False

    # Counters, mutated in place by read-path handlers
    download_count: int = 0
    views: int = 0
    share_count: int = 0

    # Set once the upload notification has been attempted
    notification_sent: bool = field(default=False, compare=False)

    def object_metadata(self) -> Dict[str, str]:
        """Metadata contract for this record's stored object."""
        return build_object_metadata(
            video_id=self.id,
            original_name=self.original_name,
            uploader=User(
                id=self.uploaded_by,
                username=self.uploader_username,
                avatar=self.uploader_avatar
            ),
            size=self.size,
            content_type=self.content_type,
            upload_date=self.upload_date,
            file_format=self.file_format,
            is_legacy_container=self.is_legacy_container,
            download_count=self.download_count
        )

    def summary(self, share_link: str) -> UploadSummary:
        return UploadSummary(
            id=self.id,
            original_name=self.original_name,
            size=self.size,
            upload_date=self.upload_date,
            share_link=share_link
        )

    @classmethod
    def from_object_metadata(
        cls,
        locator: StorageLocator,
        metadata: Dict[str, str],
        object_size: int,
        last_modified: Optional[datetime] = None,
        object_content_type: Optional[str] = None
    ) -> Optional["VideoRecord"]:
        """
        Rebuild a record from an object's metadata and properties.

        Returns:
            VideoRecord, or None if the object carries no video id
        """
        meta = {k.lower(): v for k, v in (metadata or {}).items()}
        video_id = meta.get(META_VIDEO_ID)
        if not video_id:
            return None

        file_format = meta.get(META_FILE_FORMAT) or get_file_extension(locator.key)

        return cls(
            id=video_id,
            original_name=unquote(meta.get(META_ORIGINAL_NAME, "")) or locator.key,
            size=_parse_int(meta.get(META_SIZE), object_size),
            content_type=(
                meta.get(META_CONTENT_TYPE)
                or object_content_type
                or "application/octet-stream"
            ),
            file_format=file_format,
            locator=locator,
            uploaded_by=unquote(meta.get(META_UPLOADED_BY, "")) or "Unknown",
            uploader_username=unquote(meta.get(META_UPLOADER_USERNAME, "")) or "Unknown User",
            uploader_avatar=unquote(meta.get(META_UPLOADER_AVATAR, "")),
            upload_date=_parse_date(meta.get(META_UPLOAD_DATE), last_modified),
            is_legacy_container=meta.get(META_IS_LEGACY, "false").lower() == "true",
            download_count=_parse_int(meta.get(META_DOWNLOAD_COUNT), 0),
            notification_sent=True,
        )
