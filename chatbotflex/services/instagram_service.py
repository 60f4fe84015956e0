# /chatbotflex/services/instagram_service.py

from typing import Optional

from chatbotflex.config.settings import settings
from chatbotflex.services.graph_api import MAX_TEXT_LENGTH, GraphMessagingService


class InstagramService(GraphMessagingService):
    """Instagram messaging through the linked Facebook page."""

    channel = "instagram"

    def __init__(self, access_token: Optional[str], page_id: Optional[str], base_url: str = settings.graph_api_url):
        super().__init__(base_url, access_token)
        self.page_id = page_id or "me"

    async def send_message(self, recipient_id: str, message: str) -> Optional[str]:
        """Replies to an Instagram-scoped user id. Returns the message id, or None on failure."""
        if not recipient_id:
            return None
        payload = {
            "recipient": {"id": recipient_id},
            "message": {"text": message[:MAX_TEXT_LENGTH[self.channel]]},
            "messaging_type": "RESPONSE",
        }
        return await self.post_message(f"{self.page_id}/messages", payload, recipient_id)


# Globally accessible instance
instagram_service = InstagramService(settings.instagram_access_token, settings.instagram_page_id)
