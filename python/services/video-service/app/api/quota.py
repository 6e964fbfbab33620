"""
Quota and upload history endpoints for the authenticated caller.
"""

from fastapi import APIRouter, Depends

from shared_schemas.video_service import QuotaResponse, UserUpload, UserUploadsResponse
from app.core.auth import get_current_user
from app.core.manager.quota_tracker import quota_tracker
from app.models.user import User

router = APIRouter(prefix="/api", tags=["quota"])


@router.get("/quota", response_model=QuotaResponse, response_model_by_alias=True)
async def get_quota(user: User = Depends(get_current_user)):
    """Storage usage of the authenticated caller only."""
    usage = await quota_tracker.get_usage(user.id)
    return QuotaResponse(
        quota=usage.quota,
        total_upload_size=usage.used,
        remaining_quota=usage.remaining,
        upload_count=usage.upload_count,
        usage_percentage=usage.usage_percentage,
        last_updated=usage.last_updated
    )


@router.get("/quota/uploads", response_model=UserUploadsResponse, response_model_by_alias=True)
async def get_user_uploads(user: User = Depends(get_current_user)):
    """Upload history recorded against the caller's quota."""
    record = quota_tracker.get_record(user.id)
    uploads = [
        UserUpload(
            id=summary.id,
            original_name=summary.original_name,
            size=summary.size,
            upload_date=summary.upload_date,
            share_link=summary.share_link
        )
        for summary in record.uploads
    ]
    return UserUploadsResponse(
        uploads=uploads,
        total_uploads=len(uploads),
        total_size=record.used,
        remaining_quota=record.remaining
    )
