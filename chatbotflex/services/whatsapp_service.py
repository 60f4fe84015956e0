# /chatbotflex/services/whatsapp_service.py

import re
from typing import Any, Dict, Optional

from chatbotflex.config.settings import settings
from chatbotflex.services.graph_api import MAX_TEXT_LENGTH, GraphMessagingService


class WhatsAppService(GraphMessagingService):
    """WhatsApp Cloud API: text messages from the configured business phone number."""

    channel = "whatsapp"

    def __init__(self, access_token: Optional[str], phone_id: Optional[str], base_url: str = settings.graph_api_url):
        super().__init__(base_url, access_token)
        self.phone_id = phone_id

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_id)

    def _extract_message_id(self, response_data: Dict[str, Any]) -> Optional[str]:
        return (response_data.get("messages") or [{}])[0].get("id")

    async def send_message(self, to_phone: str, message: str) -> Optional[str]:
        """Sends a text message. Returns the wamid, or None when it could not be sent."""
        clean_phone = re.sub(r"\D", "", to_phone or "")
        if not clean_phone:
            return None

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": clean_phone,
            "type": "text",
            "text": {"body": message[:MAX_TEXT_LENGTH[self.channel]]},
        }
        return await self.post_message(f"{self.phone_id}/messages", payload, clean_phone)


# Globally accessible instance
whatsapp_service = WhatsAppService(settings.whatsapp_access_token, settings.whatsapp_phone_id)
