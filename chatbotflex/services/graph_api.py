# /chatbotflex/services/graph_api.py

import httpx
import logging
import tenacity
from typing import Any, Dict, Optional

from chatbotflex.utils.circuit_breaker import CircuitBreaker
from chatbotflex.utils.metrics import outbound_messages_counter

logger = logging.getLogger(__name__)

# Meta's text limits: WhatsApp bodies up to 4096 chars, Instagram DMs up to 1000
MAX_TEXT_LENGTH = {"whatsapp": 4096, "instagram": 1000}


class GraphMessagingService:
    """
    Shared send path for the Meta Graph API channels. Subclasses build the
    channel payload; this class posts it with retries behind a circuit breaker
    and returns the provider message id, or None when delivery failed.
    """

    channel = "graph"

    def __init__(self, base_url: str, access_token: Optional[str]):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.http_client = httpx.AsyncClient(timeout=15.0)
        self.circuit_breaker = CircuitBreaker(self.channel)

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=2, min=1, max=10),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def resilient_api_call(self, func, *args, **kwargs):
        return await self.circuit_breaker.call(func, *args, **kwargs)

    def _extract_message_id(self, response_data: Dict[str, Any]) -> Optional[str]:
        return response_data.get("message_id")

    async def post_message(self, path: str, payload: Dict[str, Any], recipient: str) -> Optional[str]:
        if not self.is_configured:
            logger.error(f"{self.channel}_send_skipped: access token is not configured")
            outbound_messages_counter.labels(channel=self.channel, status="not_configured").inc()
            return None

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}
        try:
            response = await self.resilient_api_call(self.http_client.post, url, json=payload, headers=headers)
        except Exception as e:
            logger.error(f"{self.channel}_send_error to {recipient}: {e}", exc_info=True)
            outbound_messages_counter.labels(channel=self.channel, status="error").inc()
            return None

        if response.status_code == 200:
            message_id = self._extract_message_id(response.json())
            logger.info(f"{self.channel} message sent to {recipient}, id: {message_id}")
            outbound_messages_counter.labels(channel=self.channel, status="sent").inc()
            return message_id

        try:
            error_message = (response.json().get("error") or {}).get("message", "Unknown error")
        except ValueError:
            error_message = response.text
        logger.error(f"{self.channel}_send_failed to {recipient}: {response.status_code} - {error_message}")
        outbound_messages_counter.labels(channel=self.channel, status="failed").inc()
        return None

    async def close(self) -> None:
        await self.http_client.aclose()
