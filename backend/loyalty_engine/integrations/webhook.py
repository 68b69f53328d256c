"""
Webhook notification sink: delivers user notifications to an HTTP endpoint.
"""

from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings, get_settings
from ..exceptions import EngineError, TransientError

logger = structlog.get_logger()


class WebhookNotificationSink:
    """
    Posts {user_id, template, payload} as JSON to the configured URL.
    Server errors and network failures are retried.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.url = url or self.settings.notification_webhook_url
        self.token = token or self.settings.notification_webhook_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.url:
            raise EngineError("Notification webhook URL is not configured")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self.settings.notification_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    )
    async def notify(self, user_id: str, template: str, payload: Dict[str, Any]) -> None:
        client = await self._get_client()
        body = {"user_id": user_id, "template": template, "payload": payload}

        try:
            response = await client.post(self.url, json=body)
        except httpx.TimeoutException:
            raise TransientError("Notification webhook timeout", {"user_id": user_id})
        except httpx.RequestError as e:
            raise TransientError(f"Notification webhook error: {str(e)}", {"user_id": user_id})

        if response.status_code >= 500:
            raise TransientError(
                f"Notification webhook returned {response.status_code}",
                {"user_id": user_id, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise EngineError(
                f"Notification rejected: {response.status_code}",
                {"user_id": user_id, "status_code": response.status_code, "body": response.text},
            )

        logger.debug("Notification delivered", user_id=user_id, template=template)
