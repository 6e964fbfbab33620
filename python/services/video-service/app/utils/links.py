"""
Public links handed out to clients.
"""

from app.core.config import settings


def _base_url() -> str:
    return settings.PUBLIC_SERVICE_URL.rstrip("/")


def build_share_link(video_id: str) -> str:
    return f"{_base_url()}/v/{video_id}"


def build_download_link(video_id: str) -> str:
    return f"{_base_url()}/download/{video_id}"


def build_stream_link(video_id: str) -> str:
    return f"{_base_url()}/stream/{video_id}"


def build_progress_path(upload_id: str) -> str:
    return f"/api/upload/progress/{upload_id}"
