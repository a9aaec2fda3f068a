"""
Best-effort operator alerts delivered to an HTTP webhook (mail relay,
chat hook, internal API). Failures surface as NotificationDeliveryFailure;
callers decide whether to log or report them.
"""

import logging
from typing import Optional

import httpx

from core.http_client import get_client
from core.retry import RetryConfig, retry_async
from core.exceptions import NotificationDeliveryFailure
from core.request_context import get_request_id

logger = logging.getLogger(__name__)


def _on_retry(attempt: int, delay: float, exc: Exception):
    logger.warning(
        "notify_retry",
        extra={
            "attempt": attempt,
            "delay": delay,
            "error_type": type(exc).__name__,
        }
    )


DELIVERY_RETRY = RetryConfig(
    retries=3,
    base_delay=1.0,
    max_backoff=8.0,
    per_attempt_timeout=10.0,
    on_retry=_on_retry,
)


class WebhookNotifier:
    def __init__(
        self,
        webhook_url: Optional[str],
        recipient: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: RetryConfig = DELIVERY_RETRY,
    ):
        self.webhook_url = webhook_url
        self.recipient = recipient
        self._client = client
        self.retry_config = retry_config

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, subject: str, text: str) -> None:
        """
        Deliver one alert.

        :raises NotificationDeliveryFailure: not configured, or delivery failed after retries.
        """
        if not self.configured:
            raise NotificationDeliveryFailure(
                "Notification configuration missing. Set NOTIFY_WEBHOOK_URL."
            )

        payload = {"subject": subject, "text": text}
        if self.recipient:
            payload["to"] = self.recipient

        # only the alert webhook sees the internal request id
        headers = {}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id

        async def _post():
            client = self._client or get_client()
            resp = await client.post(self.webhook_url, json=payload, headers=headers)
            resp.raise_for_status()
            return resp

        try:
            resp = await retry_async(_post, config=self.retry_config)
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryFailure(
                f"Webhook answered {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryFailure(f"Webhook unreachable: {type(e).__name__}") from e

        logger.info("Notification delivered", extra={"subject": subject, "status_code": resp.status_code})

    async def send_test(self) -> None:
        await self.send(
            "QuestGPT: Test Notification",
            "This is a test notification from QuestGPT. If you're seeing this, "
            "the notification system is working correctly.",
        )
