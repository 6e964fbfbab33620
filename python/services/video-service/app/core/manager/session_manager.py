"""
Upload Session Manager - tracks in-flight uploads and retains finished ones.

Handles:
- Session creation and lookup by upload id
- Terminal state bookkeeping (completed / failed)
- Retention of finished sessions for late progress subscribers
- Background removal of expired sessions
"""

import asyncio
import logging
from typing import Dict, List, Optional

from app.core.config import settings
from app.models.session import UploadSession

logger = logging.getLogger(__name__)


class UploadSessionManager:
    """
    Manages UploadSessions with retention monitoring.
    """

    def __init__(self, retention_seconds: int, monitor_interval: int):
        self.retention_seconds = retention_seconds
        self.monitor_interval = monitor_interval
        self._sessions: Dict[str, UploadSession] = {}
        self._initialized = False
        self._monitor_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Start the retention monitor."""
        if self._initialized:
            return

        logger.info("Initializing Upload Session Manager...")
        self._initialized = True
        self._monitor_task = asyncio.create_task(self._monitor_retention_loop())
        logger.info("Upload Session Manager initialized")

    async def shutdown(self):
        """Stop the retention monitor."""
        logger.info("Shutting down Upload Session Manager...")

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        self._initialized = False
        logger.info("Upload Session Manager shutdown complete")

    def create_session(self, user_id: str, original_name: str, total_bytes: int) -> UploadSession:
        """
        Create and register a new session.

        Args:
            user_id: Uploader id
            original_name: Client-supplied filename
            total_bytes: Declared file size

        Returns:
            Created UploadSession
        """
        session = UploadSession.create(
            user_id=user_id,
            original_name=original_name,
            total_bytes=total_bytes
        )
        self._sessions[session.upload_id] = session
        logger.info(f"[{session.upload_id}] Created upload session for {original_name} ({total_bytes} bytes)")
        return session

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def get_all_sessions(self) -> List[UploadSession]:
        return list(self._sessions.values())

    def active_count(self) -> int:
        """Sessions that have not reached a terminal state."""
        return sum(1 for session in self._sessions.values() if not session.is_terminal)

    def clear(self):
        self._sessions.clear()

    def purge_expired(self) -> int:
        """Drop terminal sessions kept longer than the retention window."""
        expired = [
            upload_id for upload_id, session in self._sessions.items()
            if session.is_expired(self.retention_seconds)
        ]
        for upload_id in expired:
            del self._sessions[upload_id]

        if expired:
            logger.info(f"Removed {len(expired)} finished upload sessions")
        return len(expired)

    async def _monitor_retention_loop(self):
        """Background task removing expired sessions."""
        logger.info(f"Starting upload session monitor (interval={self.monitor_interval}s)")

        while True:
            try:
                await asyncio.sleep(self.monitor_interval)
                self.purge_expired()
            except asyncio.CancelledError:
                logger.info("Upload session monitor cancelled")
                break
            except Exception as e:
                logger.error(f"Error in upload session monitor: {e}", exc_info=True)


# Global session manager instance
session_manager = UploadSessionManager(
    retention_seconds=settings.UPLOAD_SESSION_RETENTION_SECONDS,
    monitor_interval=settings.SESSION_MONITOR_INTERVAL
)
