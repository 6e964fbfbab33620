"""
Upload progress stream (Server-Sent Events).
"""

import asyncio
import logging
from typing import AsyncIterator, Dict

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from shared_schemas.video_service import ProgressEventType
from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.manager.progress_channel import ProgressChannel, progress_channel
from app.core.manager.session_manager import UploadSessionManager, session_manager
from app.models.events import ProgressEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["progress"])


async def progress_event_stream(
    upload_id: str,
    channel: ProgressChannel,
    sessions: UploadSessionManager,
    timeout_seconds: float
) -> AsyncIterator[Dict[str, str]]:
    """
    Yield SSE messages for one upload until its close signal.

    A finished upload still retained by the session manager replays its
    terminal event. The stream ends with `close` after `timeout_seconds`
    whatever the transfer state; the transfer itself is never cancelled.
    """
    session = sessions.get_session(upload_id)
    if session is not None and session.is_terminal and session.terminal_event is not None:
        logger.debug(f"[{upload_id}] Replaying terminal event to late subscriber")
        yield ProgressEvent.connected(upload_id).to_sse()
        yield session.terminal_event.to_sse()
        yield ProgressEvent.close().to_sse()
        return

    subscription = channel.subscribe(upload_id)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds

    try:
        while True:
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError
                event = await subscription.get(timeout=remaining)
            except asyncio.TimeoutError:
                logger.info(f"[{upload_id}] Progress stream timed out after {timeout_seconds}s")
                yield ProgressEvent.close().to_sse()
                return

            yield event.to_sse()
            if event.event_type == ProgressEventType.CLOSE:
                return
    finally:
        channel.unsubscribe(subscription)


@router.get("/progress/{upload_id}")
async def stream_upload_progress(upload_id: str):
    """
    Open the progress stream of an upload.

    Messages are JSON with a `type` of connected, progress, complete, error
    or close.

    Raises:
        NotFoundError: Unknown upload id
    """
    if session_manager.get_session(upload_id) is None:
        raise NotFoundError("Upload not found")

    return EventSourceResponse(
        progress_event_stream(
            upload_id,
            progress_channel,
            session_manager,
            settings.PROGRESS_STREAM_TIMEOUT_SECONDS
        ),
        ping=settings.SSE_PING_SECONDS
    )
