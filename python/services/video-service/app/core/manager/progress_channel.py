"""
Progress Broadcast Channel - fans out upload events to SSE subscribers.

Each subscriber owns an unbounded queue; publishing is a synchronous
put_nowait on every queue, so events for one upload reach each subscriber in
publish order. There is no replay: events published while nobody listens are
dropped.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from app.models.events import ProgressEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One registered observer of an upload's events."""

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ProgressEvent):
        if not self.closed:
            self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        """Wait for the next event. Raises asyncio.TimeoutError after `timeout` seconds."""
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)


class ProgressChannel:
    """Registry of subscribers keyed by upload id."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, upload_id: str) -> Subscription:
        """Register an observer and queue the connected acknowledgement."""
        subscription = Subscription(upload_id)
        self._subscribers.setdefault(upload_id, []).append(subscription)
        subscription.deliver(ProgressEvent.connected(upload_id))
        logger.debug(f"[{upload_id}] Subscriber added ({self.subscriber_count(upload_id)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        """Remove an observer; drops the upload's entry when it was the last one."""
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.upload_id)
        if not subscribers:
            return

        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            del self._subscribers[subscription.upload_id]
        logger.debug(f"[{subscription.upload_id}] Subscriber removed")

    def publish(self, upload_id: str, event: ProgressEvent) -> int:
        """
        Deliver an event to every current observer of an upload.

        Returns:
            Number of observers reached (0 means the event was dropped)
        """
        subscribers = self._subscribers.get(upload_id)
        if not subscribers:
            return 0

        for subscription in list(subscribers):
            subscription.deliver(event)
        return len(subscribers)

    def complete(self, upload_id: str, event: ProgressEvent) -> int:
        """
        Publish a terminal event, then close, then disconnect all observers.

        Used for both `complete` and `error` terminal events.
        """
        reached = self.publish(upload_id, event)
        self.publish(upload_id, ProgressEvent.close())

        for subscription in self._subscribers.pop(upload_id, []):
            subscription.closed = True

        logger.debug(f"[{upload_id}] Channel closed ({reached} subscribers notified)")
        return reached

    def subscriber_count(self, upload_id: str) -> int:
        return len(self._subscribers.get(upload_id, []))

    def has_subscribers(self, upload_id: str) -> bool:
        return upload_id in self._subscribers

    def clear(self):
        self._subscribers.clear()


# Global progress channel instance
progress_channel = ProgressChannel()
