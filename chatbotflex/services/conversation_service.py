# /chatbotflex/services/conversation_service.py

import logging
from typing import Any, Optional

from chatbotflex.models.conversation import Conversation, ConversationStatus, InboundMessage
from chatbotflex.models.flow import ConversationContext
from chatbotflex.services.db_service import db_service, new_id, now_utc
from chatbotflex.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

BOT_SENDER = "bot"
OPEN_STATUSES = [
    ConversationStatus.BOT.value,
    ConversationStatus.WAITING.value,
    ConversationStatus.HUMAN.value,
]


class ConversationService:
    """Conversation and message records that the bot turn reads and writes."""

    def __init__(self, database):
        self.db = database

    async def get_or_create_conversation(self, inbound: InboundMessage) -> Conversation:
        """
        The open conversation for the message's channel and sender, created in
        bot mode with a fresh context when there is none.
        """
        document = await self.db.conversations.find_one({
            "channel": inbound.channel.value,
            "contact_id": inbound.sender_id,
            "status": {"$in": OPEN_STATUSES},
        })

        if document:
            if inbound.sender_name and document.get("contact_name") != inbound.sender_name:
                await self.db.conversations.update_one(
                    {"_id": document["_id"]},
                    {"$set": {"contact_name": inbound.sender_name, "updated_at": now_utc()}},
                )
                document["contact_name"] = inbound.sender_name
            return Conversation.model_validate(document)

        timestamp = now_utc()
        document = {
            "_id": new_id(),
            "channel": inbound.channel.value,
            "contact_id": inbound.sender_id,
            "contact_name": inbound.sender_name or inbound.sender_id,
            "status": ConversationStatus.BOT.value,
            "botContext": ConversationContext().to_document(),
            "tags": [],
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        await self.db.conversations.insert_one(document)
        database_operations_counter.labels(operation="create_conversation", status="success").inc()
        logger.info(f"New {inbound.channel.value} conversation {document['_id']} for {inbound.sender_id}.")
        return Conversation.model_validate(document)

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        message_type: str = "text",
        external_id: Optional[str] = None,
        touch_conversation: bool = True,
    ) -> str:
        """
        Appends a message to the conversation. Unless `touch_conversation` is
        off, the conversation's last-activity fields move forward and any
        pending inactivity warning is cleared.
        """
        timestamp = now_utc()
        message_id = new_id()
        await self.db.messages.insert_one({
            "_id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": text,
            "type": message_type,
            "is_from_bot": sender_id == BOT_SENDER,
            "external_id": external_id,
            "timestamp": timestamp,
        })
        if touch_conversation:
            await self.db.conversations.update_one(
                {"_id": conversation_id},
                {"$set": {
                    "last_message": text,
                    "last_message_at": timestamp,
                    "updated_at": timestamp,
                    "auto_close_warning_sent": False,
                }},
            )
        return message_id

    async def set_status(self, conversation_id: str, status: ConversationStatus, **fields: Any) -> None:
        changes = {"status": status.value, "updated_at": now_utc(), **fields}
        await self.db.conversations.update_one({"_id": conversation_id}, {"$set": changes})
        logger.info(f"Conversation {conversation_id} is now {status.value}.")

    async def close_conversation(self, conversation_id: str, reason: Optional[str] = None) -> None:
        fields = {"closed_at": now_utc()}
        if reason:
            fields["closed_reason"] = reason
        await self.set_status(conversation_id, ConversationStatus.CLOSED, **fields)


# Globally accessible instance
conversation_service = ConversationService(db_service.db)
