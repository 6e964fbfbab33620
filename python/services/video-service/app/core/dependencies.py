"""
Process-wide outbound HTTP client, shared by webhook notifications.
"""

import logging

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

_webhook_client: httpx.AsyncClient | None = None


async def get_webhook_client() -> httpx.AsyncClient:
    """Return the shared client, creating it on first use."""
    global _webhook_client
    if _webhook_client is None:
        _webhook_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.WEBHOOK_TIMEOUT_SECONDS),
            headers={"User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"},
            follow_redirects=False
        )
        logger.debug("Created webhook HTTP client")
    return _webhook_client


async def close_webhook_client():
    global _webhook_client
    client, _webhook_client = _webhook_client, None
    if client is not None:
        await client.aclose()
