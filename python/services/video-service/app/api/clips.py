"""
Clip listing and analytics counters.
"""

import logging

from fastapi import APIRouter, Depends

from shared_schemas.video_service import ClipListResponse, ClipSummary, CounterResponse
from app.core.auth import get_current_user
from app.core.manager.video_store import video_store
from app.models.video import VideoRecord
from app.utils.links import build_share_link

logger = logging.getLogger(__name__)

# Listing requires a logged-in user
clips_router = APIRouter(
    prefix="/api/clips",
    tags=["clips"],
    dependencies=[Depends(get_current_user)]
)

# Counters are bumped from public share pages
analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])

routers = [clips_router, analytics_router]


def _counters(record: VideoRecord) -> CounterResponse:
    return CounterResponse(
        id=record.id,
        views=record.views,
        shares=record.share_count,
        downloads=record.download_count
    )


@clips_router.get("", response_model=ClipListResponse, response_model_by_alias=True)
async def list_clips():
    """All clips, newest first."""
    records = sorted(video_store.scan(), key=lambda r: r.upload_date, reverse=True)
    clips = [
        ClipSummary(
            id=record.id,
            original_name=record.original_name,
            size=record.size,
            upload_date=record.upload_date,
            share_link=build_share_link(record.id),
            username=record.uploader_username,
            user_avatar=record.uploader_avatar
        )
        for record in records
    ]
    return ClipListResponse(clips=clips, total=len(clips))


@analytics_router.post("/view/{video_id}", response_model=CounterResponse, response_model_by_alias=True)
async def track_view(video_id: str):
    record = video_store.increment(video_id, "views")
    return _counters(record)


@analytics_router.post("/share/{video_id}", response_model=CounterResponse, response_model_by_alias=True)
async def track_share(video_id: str):
    record = video_store.increment(video_id, "share_count")
    return _counters(record)
