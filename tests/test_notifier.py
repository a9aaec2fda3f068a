import json

import httpx
import pytest

from core.exceptions import NotificationDeliveryFailure
from core.request_context import set_request_id
from core.retry import RetryConfig
from tools.notifier import WebhookNotifier

NO_WAIT = RetryConfig(retries=3, base_delay=0, jitter=False)


def make_notifier(handler, url="https://hooks.test/alerts", recipient=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotifier(url, recipient=recipient, client=client, retry_config=NO_WAIT)


@pytest.mark.asyncio
async def test_send_posts_subject_text_and_recipient():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = make_notifier(handler, recipient="ops@example.com")
    await notifier.send("Low keys", "Only 1 of 5 keys remaining.")

    assert bodies == [{"subject": "Low keys", "text": "Only 1 of 5 keys remaining.", "to": "ops@example.com"}]


@pytest.mark.asyncio
async def test_unconfigured_notifier_raises():
    notifier = WebhookNotifier(None)
    assert not notifier.configured
    with pytest.raises(NotificationDeliveryFailure, match="NOTIFY_WEBHOOK_URL"):
        await notifier.send_test()


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(503 if calls < 3 else 200)

    await make_notifier(handler).send_test()
    assert calls == 3


@pytest.mark.asyncio
async def test_client_error_fails_without_retry():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(400)

    with pytest.raises(NotificationDeliveryFailure, match="400"):
        await make_notifier(handler).send("s", "t")
    assert calls == 1


@pytest.mark.asyncio
async def test_unreachable_webhook_raises_delivery_failure():

    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(NotificationDeliveryFailure, match="unreachable"):
        await make_notifier(handler).send("s", "t")


@pytest.mark.asyncio
async def test_request_id_forwarded_to_webhook():
    seen = []

    def handler(request):
        seen.append(request.headers.get("X-Request-ID"))
        return httpx.Response(200)

    set_request_id("req-42")
    try:
        await make_notifier(handler).send("s", "t")
    finally:
        set_request_id(None)

    assert seen == ["req-42"]
