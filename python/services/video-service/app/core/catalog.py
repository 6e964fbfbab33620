"""
Catalog rebuild - reconstructs the in-memory catalog from object storage.

Stored objects carry their VideoRecord in user metadata, so the catalog
survives a restart without any other store.
"""

import logging
from typing import Callable, Iterable, List

from app.core.manager.quota_tracker import QuotaTracker
from app.core.manager.video_store import InMemoryVideoStore
from app.models.video import StorageLocator, VideoRecord
from app.s3.client import S3Client, StoredObject
from app.utils.links import build_share_link

logger = logging.getLogger(__name__)


def records_from_listing(
    objects: Iterable[StoredObject],
    bucket: str,
    url_for: Callable[[str, str], str]
) -> List[VideoRecord]:
    """
    Turn a bucket listing into VideoRecords.

    Objects without a video id tag are skipped.

    Args:
        objects: Listed objects with their user metadata
        bucket: Bucket the objects live in
        url_for: (bucket, key) -> canonical object URL
    """
    records = []
    for obj in objects:
        locator = StorageLocator(bucket=bucket, key=obj.key, url=url_for(bucket, obj.key))
        record = VideoRecord.from_object_metadata(
            locator=locator,
            metadata=obj.metadata,
            object_size=obj.size,
            last_modified=obj.last_modified,
            object_content_type=obj.content_type
        )
        if record is None:
            logger.debug(f"Skipping untagged object {bucket}/{obj.key}")
            continue
        records.append(record)
    return records


async def rebuild_catalog(
    storage: S3Client,
    bucket: str,
    store: InMemoryVideoStore,
    quota: QuotaTracker
) -> int:
    """
    Replace the catalog with what storage holds and re-seed quota usage.

    Returns:
        Number of videos loaded
    """
    logger.info(f"Rebuilding video catalog from bucket {bucket}...")

    objects = await storage.run(storage.list_objects_with_metadata, bucket)
    records = records_from_listing(objects, bucket, storage.get_object_url)

    count = store.replace_all(records)
    quota.seed_from_records(records, build_share_link)

    logger.info(f"Catalog rebuilt: {count} videos ({len(objects) - count} untagged objects skipped)")
    return count
