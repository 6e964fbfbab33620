"""
Upload API endpoint.
Validates and stages the file, then hands the transfer off to the orchestrator.
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from shared_schemas.video_service import UploadStartedResponse
from app.core.auth import get_current_user
from app.core.errors import ValidationError
from app.core.upload.orchestrator import upload_orchestrator
from app.models.user import User
from app.utils.links import build_progress_path
from app.utils.staging import stage_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])


@router.post("/upload", response_model=UploadStartedResponse, response_model_by_alias=True)
async def upload_video(
    video: UploadFile = File(None),
    user: User = Depends(get_current_user)
):
    """
    Start a video upload.

    Returns immediately with an upload id; progress, completion and failure
    are reported on the progress stream.

    Raises:
        ValidationError: Missing file, bad name, unsupported type or too large
        QuotaExceededError: Not enough quota left for this file
    """
    if video is None:
        raise ValidationError("No video file provided")

    staged = await stage_upload(video)
    session = await upload_orchestrator.start_upload(staged, user)

    logger.info(f"[{session.upload_id}] Upload started by {user.id}: {staged.original_name} ({staged.size} bytes)")

    return UploadStartedResponse(
        upload_id=session.upload_id,
        progress_url=build_progress_path(session.upload_id)
    )
