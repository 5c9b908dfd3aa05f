"""Outbound milestone event notifications."""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from milestone_tracker.constants.constants import MilestoneEvent
from milestone_tracker.core.config import settings

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when a webhook delivery is rejected by the receiver."""


class MilestoneNotifier:
    """
    Dispatches milestone events to the configured webhook.

    Delivery is fire-and-forget from the caller's point of view: the closure
    cascade records a failure and retries later, it never reopens a milestone.
    Without a webhook URL events are only logged.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self.transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.webhook_url, json=payload)

        if response.status_code >= 400:
            raise NotificationDeliveryError(
                f"Webhook rejected {payload['event']} with {response.status_code}: {response.text}"
            )

    async def notify(self, event: MilestoneEvent, milestone_id: str) -> None:
        payload = {
            "event": event.value,
            "milestone_id": milestone_id,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        if not self.webhook_url:
            logger.info(f"📣 {event.value} for milestone {milestone_id} (no webhook configured)")
            return

        await self._post(payload)
        logger.info(f"📣 {event.value} for milestone {milestone_id} delivered")


notifier = MilestoneNotifier()
