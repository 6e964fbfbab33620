"""
Discord webhook client for upload notifications.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import NotificationFailed
from app.models.video import VideoRecord

logger = logging.getLogger(__name__)

DISCORD_WEBHOOK_PREFIX = "https://discord.com/api/webhooks/"
EMBED_COLOR = 0x7F00FF
MAX_TITLE_CHARS = 100


def is_valid_webhook_url(url: Optional[str]) -> bool:
    return bool(url) and url.startswith(DISCORD_WEBHOOK_PREFIX)


def build_upload_embed(record: VideoRecord, share_link: str) -> Dict[str, Any]:
    """
    Build the webhook body announcing an uploaded clip.

    Long names are cut to 100 characters with an ellipsis.
    """
    name = record.original_name
    if len(name) > MAX_TITLE_CHARS:
        name = f"{name[:MAX_TITLE_CHARS]}..."

    size_mb = record.size / (1024 * 1024)

    return {
        "embeds": [{
            "title": "Clip Uploaded",
            "description": f"**{name}**\n\n[View Clip]({share_link})",
            "color": EMBED_COLOR,
            "fields": [
                {
                    "name": "Uploaded by",
                    "value": record.uploader_username or "Unknown User",
                    "inline": True
                },
                {
                    "name": "File Size",
                    "value": f"{size_mb:.2f} MB",
                    "inline": True
                },
                {
                    "name": "Upload Time",
                    "value": record.upload_date.strftime("%Y-%m-%d %H:%M:%S UTC"),
                    "inline": True
                },
            ],
            "timestamp": record.upload_date.isoformat(),
            "footer": {"text": "Clip Sharing"}
        }]
    }


async def send_upload_notification(
    client: httpx.AsyncClient,
    record: VideoRecord,
    share_link: str,
    webhook_url: Optional[str] = None
) -> bool:
    """
    Post an upload announcement to the configured Discord webhook.

    Args:
        client: Shared HTTP client
        record: Newly persisted video
        share_link: Public share page of the video
        webhook_url: Override of settings.DISCORD_WEBHOOK_URL

    Returns:
        True if sent, False if no valid webhook is configured

    Raises:
        NotificationFailed: If the webhook call fails
    """
    url = webhook_url if webhook_url is not None else settings.DISCORD_WEBHOOK_URL
    if not is_valid_webhook_url(url):
        logger.info("Discord webhook not configured or invalid, skipping notification")
        return False

    logger.info(f"[{record.id}] Sending Discord notification for {record.original_name}")

    try:
        response = await client.post(url, json=build_upload_embed(record, share_link))
    except httpx.RequestError as e:
        raise NotificationFailed(f"Discord webhook request failed: {e}") from e

    if response.status_code >= 300:
        raise NotificationFailed(f"Discord webhook failed: HTTP {response.status_code}")

    logger.info(f"[{record.id}] Discord notification sent")
    return True
