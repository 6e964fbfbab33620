"""
Read-path endpoints for stored videos: share data, download and streaming.
Public: anyone with the link may watch or download.
"""

import logging
from typing import Optional

from botocore.exceptions import ClientError
from fastapi import APIRouter, Response
from fastapi.responses import RedirectResponse

from shared_schemas.video_service import UploaderInfo, VideoResponse
from app.core.config import settings
from app.core.errors import NotFoundError, StorageUnavailableError
from app.core.manager.video_store import video_store
from app.models.video import VideoRecord
from app.s3.client import s3_client
from app.utils.links import build_download_link, build_share_link, build_stream_link

logger = logging.getLogger(__name__)

router = APIRouter(tags=["videos"])

STREAM_CACHE_CONTROL = "public, max-age=3600"


def to_video_response(record: VideoRecord) -> VideoResponse:
    return VideoResponse(
        id=record.id,
        original_name=record.original_name,
        size=record.size,
        content_type=record.content_type,
        file_format=record.file_format,
        upload_date=record.upload_date,
        uploader=UploaderInfo(
            id=record.uploaded_by,
            username=record.uploader_username,
            avatar=record.uploader_avatar
        ),
        share_link=build_share_link(record.id),
        stream_url=build_stream_link(record.id),
        download_url=build_download_link(record.id),
        download_count=record.download_count,
        views=record.views,
        share_count=record.share_count,
        is_legacy_container=record.is_legacy_container
    )


def playback_content_type(record: VideoRecord) -> str:
    """MKV is advertised as MP4 so browsers attempt inline playback."""
    if record.is_legacy_container:
        return "video/mp4"
    return record.content_type


async def _presigned_url(record: VideoRecord, download_name: Optional[str] = None) -> str:
    try:
        return await s3_client.run(
            s3_client.generate_presigned_url,
            record.locator.bucket,
            record.locator.key,
            settings.DEFAULT_SIGNED_URL_EXPIRATION,
            download_name
        )
    except ClientError as e:
        logger.error(f"[{record.id}] Failed to sign URL: {e}")
        raise StorageUnavailableError("Video streaming failed") from e


@router.get("/v/{video_id}", response_model=VideoResponse, response_model_by_alias=True)
async def get_video(video_id: str):
    """
    Share-page data for a video.

    Raises:
        NotFoundError: Unknown video id
    """
    record = video_store.require(video_id)
    return to_video_response(record)


@router.get("/download/{video_id}")
async def download_video(video_id: str):
    """
    Count a download and redirect to a time-limited attachment URL.

    Raises:
        NotFoundError: Unknown video id
        StorageUnavailableError: URL signing failed
    """
    record = video_store.increment(video_id, "download_count")
    url = await _presigned_url(record, download_name=record.original_name)

    logger.info(f"[{video_id}] Download #{record.download_count}: {record.original_name}")
    return RedirectResponse(url=url, status_code=302)


@router.get("/stream/{video_id}")
async def stream_video(video_id: str):
    """
    Redirect to a time-limited URL of the stored object.

    Raises:
        NotFoundError: Unknown video id
        StorageUnavailableError: URL signing failed
    """
    record = video_store.require(video_id)
    url = await _presigned_url(record)
    return RedirectResponse(url=url, status_code=302)


@router.head("/stream/{video_id}")
async def stream_video_head(video_id: str):
    """
    Stream headers read from the stored object (type, length, range support).

    Raises:
        NotFoundError: Unknown video id or missing object
        StorageUnavailableError: Storage could not be reached
    """
    record = video_store.require(video_id)

    try:
        properties = await s3_client.run(
            s3_client.get_object_properties,
            record.locator.bucket,
            record.locator.key
        )
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code in ("404", "NoSuchKey", "NotFound"):
            raise NotFoundError("Video not found") from e
        logger.error(f"[{video_id}] Failed to read object properties: {e}")
        raise StorageUnavailableError("Video streaming failed") from e

    return Response(
        status_code=200,
        headers={
            "Content-Type": playback_content_type(record),
            "Content-Length": str(properties.size),
            "Accept-Ranges": "bytes",
            "Cache-Control": STREAM_CACHE_CONTROL,
        }
    )
