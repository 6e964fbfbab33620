"""
Upload Orchestrator - sequences one upload and its side effects.

The HTTP handler only runs the quota gate and spawns the pipeline; the
pipeline then runs detached from the request:

    engine transfer -> persist VideoRecord -> record quota
    -> notify (at most once) -> broadcast complete

On transfer failure an error event is broadcast and neither the catalog nor
the quota is touched.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from shared_schemas.video_service import UploadCompletePayload, UploaderQuota
from app.clients.discord_client import send_upload_notification
from app.core.config import settings
from app.core.dependencies import get_webhook_client
from app.core.errors import NotificationFailed, UploadFailed, ValidationError
from app.core.manager.progress_channel import ProgressChannel, progress_channel
from app.core.manager.quota_tracker import QuotaRecord, QuotaTracker, quota_tracker
from app.core.manager.session_manager import UploadSessionManager, session_manager
from app.core.manager.video_store import InMemoryVideoStore, video_store
from app.core.upload.engine import ChunkedUploadEngine, UploadResult, upload_engine
from app.models.events import ProgressEvent
from app.models.session import UploadSession
from app.models.user import User
from app.models.video import MAX_METADATA_BYTES, VideoRecord, estimate_metadata_size
from app.utils.content_type import LEGACY_CONTAINER_WARNING
from app.utils.links import build_download_link, build_share_link
from app.utils.staging import StagedFile, cleanup_staged_file

logger = logging.getLogger(__name__)

TRANSFER_FAILED_MESSAGE = "File upload failed. Please try again."
GENERIC_FAILED_MESSAGE = "Upload failed. Please try again."

Notifier = Callable[[VideoRecord, str], Awaitable[bool]]


async def discord_notifier(record: VideoRecord, share_link: str) -> bool:
    client = await get_webhook_client()
    return await send_upload_notification(client, record, share_link)


class UploadOrchestrator:
    """
    Runs upload pipelines as background tasks.
    """

    def __init__(
        self,
        engine: ChunkedUploadEngine,
        store: InMemoryVideoStore,
        quota: QuotaTracker,
        channel: ProgressChannel,
        sessions: UploadSessionManager,
        notifier: Optional[Notifier] = None,
        verbose_errors: bool = False,
        shutdown_grace_seconds: float = 30
    ):
        self.engine = engine
        self.store = store
        self.quota = quota
        self.channel = channel
        self.sessions = sessions
        self.notifier = notifier or discord_notifier
        self.verbose_errors = verbose_errors
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    async def start_upload(self, staged: StagedFile, user: User) -> UploadSession:
        """
        Check quota and hand the transfer off to a background task.

        Args:
            staged: Validated file copied to local disk (owned by the pipeline from here)
            user: Authenticated uploader

        Returns:
            The new UploadSession (its upload_id is returned to the client)

        Raises:
            ValidationError: The stored object's metadata would exceed the storage limit
            QuotaExceededError: Remaining quota is smaller than the file
        """
        try:
            self._check_metadata_fits(staged, user)
            await self.quota.ensure_can_upload(user.id, staged.size)

            session = self.sessions.create_session(
                user_id=user.id,
                original_name=staged.original_name,
                total_bytes=staged.size
            )
            task = asyncio.create_task(
                self._run(session, staged, user),
                name=f"upload-{session.upload_id}"
            )
        except BaseException:
            await cleanup_staged_file(staged.path)
            raise

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return session

    @staticmethod
    def _check_metadata_fits(staged: StagedFile, user: User):
        size = estimate_metadata_size(staged.original_name, user, staged.size, staged.content_type)
        if size > MAX_METADATA_BYTES:
            raise ValidationError(
                f"File name and profile details are too long to store ({size} of {MAX_METADATA_BYTES} bytes)"
            )

    async def _run(self, session: UploadSession, staged: StagedFile, user: User):
        upload_id = session.upload_id
        logger.info(f"[{upload_id}] Step 1: Transferring {staged.original_name} for user {user.id}")

        try:
            self._on_progress(session, 0, staged.size)

            async with staged.open() as source:
                result = await self.engine.upload(
                    source,
                    staged.size,
                    staged.original_name,
                    user,
                    on_progress=lambda done, total: self._on_progress(session, done, total)
                )

            await self._finalize(session, result, user)

        except asyncio.CancelledError:
            logger.warning(f"[{upload_id}] Upload cancelled")
            self._fail(session, UploadFailed("Upload cancelled"))
            raise
        except Exception as e:
            logger.error(f"[{upload_id}] Upload failed: {e}", exc_info=not isinstance(e, UploadFailed))
            self._fail(session, e)
        finally:
            await cleanup_staged_file(staged.path)

    def _on_progress(self, session: UploadSession, bytes_uploaded: int, total_bytes: int):
        stored = session.advance(bytes_uploaded)
        self.channel.publish(
            session.upload_id,
            ProgressEvent.progress(session.upload_id, stored, total_bytes)
        )

    async def _finalize(self, session: UploadSession, result: UploadResult, user: User):
        upload_id = session.upload_id

        logger.info(f"[{upload_id}] Step 2: Persisting video {result.video_id}")
        record = VideoRecord(
            id=result.video_id,
            original_name=result.original_name,
            size=result.size,
            content_type=result.content_type,
            file_format=result.file_format,
            locator=result.locator,
            uploaded_by=user.id,
            uploader_username=user.username,
            uploader_avatar=user.avatar,
            upload_date=result.upload_date,
            is_legacy_container=result.is_legacy_container
        )
        self.store.put(record)

        share_link = build_share_link(record.id)

        logger.info(f"[{upload_id}] Step 3: Recording quota usage")
        quota_record = await self.quota.record(user.id, record.size, record.summary(share_link))

        logger.info(f"[{upload_id}] Step 4: Sending notification")
        await self.notify_once(record)

        logger.info(f"[{upload_id}] Step 5: Broadcasting completion")
        event = ProgressEvent.complete(
            upload_id,
            self._complete_payload(record, share_link, user, quota_record)
        )
        session.mark_completed(record.id, event)
        self.channel.complete(upload_id, event)

        logger.info(f"[{upload_id}] Upload complete: {record.original_name} -> {share_link}")

    def _complete_payload(
        self,
        record: VideoRecord,
        share_link: str,
        user: User,
        quota_record: QuotaRecord
    ) -> dict:
        payload = UploadCompletePayload(
            id=record.id,
            share_link=share_link,
            download_url=build_download_link(record.id),
            preview_url=record.locator.url,
            filename=record.original_name,
            size=record.size,
            content_type=record.content_type,
            file_format=record.file_format,
            warning=LEGACY_CONTAINER_WARNING if record.is_legacy_container else None,
            user=UploaderQuota(
                username=user.username,
                quota_used=quota_record.used,
                quota_remaining=quota_record.remaining
            )
        )
        return payload.model_dump(by_alias=True, mode="json")

    async def notify_once(self, record: VideoRecord) -> bool:
        """
        Send the upload notification at most once per video id.

        Any notifier failure is logged and swallowed; the upload stands.

        Returns:
            True if a notification was sent by this call
        """
        if not self.store.mark_notified(record.id):
            logger.debug(f"[{record.id}] Notification already sent, skipping")
            return False

        try:
            return await self.notifier(record, build_share_link(record.id))
        except NotificationFailed as e:
            logger.warning(f"[{record.id}] Notification failed: {e.message}")
            return False
        except Exception as e:
            logger.warning(f"[{record.id}] Notifier raised unexpectedly: {e}", exc_info=True)
            return False

    def _fail(self, session: UploadSession, exc: BaseException):
        message = TRANSFER_FAILED_MESSAGE if isinstance(exc, UploadFailed) else GENERIC_FAILED_MESSAGE
        details = str(exc) if self.verbose_errors else None

        event = ProgressEvent.error(session.upload_id, message, details)
        session.mark_failed(event)
        self.channel.complete(session.upload_id, event)

    async def shutdown(self, timeout: Optional[float] = None):
        """Wait for in-flight uploads, cancelling those still running after the grace period."""
        if not self._tasks:
            return

        timeout = self.shutdown_grace_seconds if timeout is None else timeout
        logger.info(f"Waiting up to {timeout}s for {len(self._tasks)} in-flight uploads...")

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} uploads still running after shutdown grace period")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


# Global upload orchestrator instance
upload_orchestrator = UploadOrchestrator(
    engine=upload_engine,
    store=video_store,
    quota=quota_tracker,
    channel=progress_channel,
    sessions=session_manager,
    verbose_errors=settings.VERBOSE_ERRORS,
    shutdown_grace_seconds=settings.SHUTDOWN_GRACE_SECONDS
)
