import httpx
import pytest

from milestone_tracker.constants.constants import MilestoneEvent
from milestone_tracker.services.MilestoneNotifications import MilestoneNotifier, NotificationDeliveryError


async def test_notify_posts_event_to_webhook():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(202)

    notifier = MilestoneNotifier(
        webhook_url="https://hooks.example.test/milestones",
        transport=httpx.MockTransport(handler),
    )
    await notifier.notify(MilestoneEvent.milestone_closed, "m-1")

    assert len(received) == 1
    payload = received[0].read()
    assert b'"event":"milestone_closed"' in payload.replace(b" ", b"")
    assert b'"milestone_id":"m-1"' in payload.replace(b" ", b"")


async def test_rejected_delivery_raises():
    notifier = MilestoneNotifier(
        webhook_url="https://hooks.example.test/milestones",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    with pytest.raises(NotificationDeliveryError):
        await notifier.notify(MilestoneEvent.milestone_closed, "m-1")


async def test_notify_without_webhook_only_logs():
    def handler(request):
        raise AssertionError("no request expected")

    notifier = MilestoneNotifier(webhook_url="", transport=httpx.MockTransport(handler))
    await notifier.notify(MilestoneEvent.milestone_closed, "m-1")
