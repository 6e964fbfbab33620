"""
Quota Tracker - per-user storage usage and upload history.

Handles:
- Account registration with default or overridden quota
- "Can user U upload N more bytes" checks (advisory, before transfer)
- Recording completed uploads (serialized per user)
- Strict usage mode that sums owned objects in storage
- Re-seeding records from the rebuilt catalog after a restart
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

from app.core.config import settings
from app.core.errors import QuotaExceededError
from app.models.video import META_UPLOADED_BY, UploadSummary, VideoRecord
from app.s3.client import S3Client, s3_client

logger = logging.getLogger(__name__)


@dataclass
class QuotaRecord:
    """Usage of one user. `remaining` is derived and floored at zero."""

    user_id: str
    quota: int
    used: int = 0
    uploads: List[UploadSummary] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def remaining(self) -> int:
        return max(0, self.quota - self.used)


@dataclass
class QuotaUsage:
    """Point-in-time usage answer."""

    used: int
    quota: int
    upload_count: int
    last_updated: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.quota - self.used)

    @property
    def usage_percentage(self) -> int:
        if self.quota <= 0:
            return 100
        return round(self.used / self.quota * 100)


class QuotaTracker:
    """
    Maintains QuotaRecords for all known users.
    """

    def __init__(
        self,
        default_quota: int,
        overrides: Optional[Dict[str, int]] = None,
        strict: bool = False,
        storage: Optional[S3Client] = None,
        bucket: Optional[str] = None
    ):
        self.default_quota = default_quota
        self.overrides = dict(overrides or {})
        self.strict = strict
        self.storage = storage
        self.bucket = bucket
        self._records: Dict[str, QuotaRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def register_user(self, user_id: str, quota: Optional[int] = None) -> QuotaRecord:
        """
        Create the user's record on first sight (account creation).

        The quota is fixed here: explicit value, else configured override,
        else the default. Existing records are returned unchanged.
        """
        record = self._records.get(user_id)
        if record is not None:
            return record

        if quota is None:
            quota = self.overrides.get(user_id, self.default_quota)

        record = QuotaRecord(user_id=user_id, quota=quota)
        self._records[user_id] = record
        logger.info(f"Registered quota for user {user_id}: {quota} bytes")
        return record

    def get_record(self, user_id: str) -> QuotaRecord:
        return self.register_user(user_id)

    async def get_usage(self, user_id: str) -> QuotaUsage:
        """
        Current usage of a user.

        Uses the cached record, or in strict mode sums the sizes of every
        stored object owned by the user.
        """
        record = self.get_record(user_id)

        if self.strict and self.storage is not None:
            used, count = await self._scan_storage_usage(user_id)
            return QuotaUsage(
                used=used,
                quota=record.quota,
                upload_count=count,
                last_updated=datetime.now(timezone.utc)
            )

        return QuotaUsage(
            used=record.used,
            quota=record.quota,
            upload_count=len(record.uploads),
            last_updated=record.last_updated
        )

    async def remaining(self, user_id: str) -> int:
        usage = await self.get_usage(user_id)
        return usage.remaining

    async def can_upload(self, user_id: str, size: int) -> bool:
        return size <= await self.remaining(user_id)

    async def ensure_can_upload(self, user_id: str, size: int) -> QuotaUsage:
        """
        Quota gate used before a transfer starts.

        Raises:
            QuotaExceededError: If size exceeds the remaining quota
        """
        usage = await self.get_usage(user_id)
        if size > usage.remaining:
            logger.info(
                f"Quota exceeded for user {user_id}: "
                f"{usage.used}/{usage.quota} bytes used, file is {size} bytes"
            )
            raise QuotaExceededError(
                user_id=user_id,
                file_size=size,
                used=usage.used,
                remaining=usage.remaining,
                quota=usage.quota
            )
        return usage

    async def record(self, user_id: str, size: int, summary: UploadSummary) -> QuotaRecord:
        """
        Add a completed upload to the user's usage. Never decrements.

        Updates for one user are serialized so concurrent completions cannot
        lose an increment.
        """
        if size < 0:
            raise ValueError("size must be non-negative")

        async with self._locks[user_id]:
            record = self.get_record(user_id)
            record.used += size
            record.uploads.append(summary)
            record.last_updated = datetime.now(timezone.utc)

        logger.info(
            f"Updated quota for user {user_id}: "
            f"{record.used} bytes used, {record.remaining} bytes remaining"
        )
        return record

    def seed_from_records(self, records: Iterable[VideoRecord], share_link_for) -> int:
        """
        Rebuild usage from the catalog (after a restart).

        Quotas already registered are kept; usage and history are replaced.

        Returns:
            Number of users seeded
        """
        by_user: Dict[str, List[VideoRecord]] = defaultdict(list)
        for video in records:
            by_user[video.uploaded_by].append(video)

        for user_id, videos in by_user.items():
            videos.sort(key=lambda v: v.upload_date)
            record = self.get_record(user_id)
            record.used = sum(v.size for v in videos)
            record.uploads = [v.summary(share_link_for(v.id)) for v in videos]
            record.last_updated = datetime.now(timezone.utc)

        logger.info(f"Seeded quota records for {len(by_user)} users from catalog")
        return len(by_user)

    def clear(self) -> None:
        self._records.clear()
        self._locks.clear()

    async def _scan_storage_usage(self, user_id: str) -> tuple:
        """Sum sizes of objects tagged with this owner."""
        objects = await self.storage.run(self.storage.list_objects_with_metadata, self.bucket)
        owner_tag = quote(user_id, safe="")

        total = 0
        count = 0
        for obj in objects:
            if obj.metadata.get(META_UPLOADED_BY) == owner_tag:
                total += obj.size
                count += 1

        logger.info(f"User {user_id}: {count} videos, {total / 1024 / 1024:.2f} MB total in storage")
        return total, count


# Global quota tracker instance
quota_tracker = QuotaTracker(
    default_quota=settings.DEFAULT_USER_QUOTA_BYTES,
    overrides=settings.USER_QUOTA_OVERRIDES,
    strict=settings.QUOTA_STRICT_MODE,
    storage=s3_client,
    bucket=settings.VIDEO_BUCKET
)
