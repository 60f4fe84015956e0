# /chatbotflex/services/auto_close_service.py

import logging
from datetime import timedelta
from typing import Dict

from chatbotflex.config import strings
from chatbotflex.config.settings import settings
from chatbotflex.models.conversation import Channel, Conversation
from chatbotflex.services.conversation_service import (
    BOT_SENDER,
    OPEN_STATUSES,
    ConversationService,
    conversation_service,
)
from chatbotflex.services.db_service import db_service, now_utc
from chatbotflex.services.flow_store import FlowStore, flow_store
from chatbotflex.services.instagram_service import instagram_service
from chatbotflex.services.whatsapp_service import whatsapp_service
from chatbotflex.utils.metrics import auto_close_counter

logger = logging.getLogger(__name__)

AUTO_CLOSE_BATCH_SIZE = 100
INACTIVITY_REASON = "inactivity"


class AutoCloseService:
    """
    Closes open conversations that have been idle for too long.

    Each pass first closes conversations past the inactivity timeout (their bot
    context goes back to the defaults so a later message starts the flow
    over), then warns the ones that will expire within the warning window.
    A conversation is warned at most once until it sees new activity.
    """

    def __init__(
        self,
        database,
        conversations: ConversationService,
        store: FlowStore,
        senders: Dict[Channel, object],
        enabled: bool = True,
        inactivity_minutes: int = 60,
        send_warning: bool = True,
        warning_minutes: int = 10,
    ):
        self.db = database
        self.conversations = conversations
        self.store = store
        self.senders = senders
        self.enabled = enabled
        self.inactivity_minutes = inactivity_minutes
        self.send_warning = send_warning
        self.warning_minutes = warning_minutes

    async def run(self) -> Dict[str, int]:
        """One auto-close pass. Returns how many conversations were closed and warned."""
        if not self.enabled:
            logger.info("Conversation auto-close is disabled, skipping pass.")
            return {"closed": 0, "warned": 0}

        now = now_utc()
        inactive_before = now - timedelta(minutes=self.inactivity_minutes)
        closed = await self._close_inactive(inactive_before)

        warned = 0
        if self.send_warning and 0 < self.warning_minutes < self.inactivity_minutes:
            warn_before = now - timedelta(minutes=self.inactivity_minutes - self.warning_minutes)
            warned = await self._warn_expiring(inactive_before, warn_before)

        if closed or warned:
            logger.info(f"Auto-close pass: {closed} conversations closed, {warned} warned.")
        return {"closed": closed, "warned": warned}

    async def _close_inactive(self, inactive_before) -> int:
        documents = await self.db.conversations.find({
            "status": {"$in": OPEN_STATUSES},
            "updated_at": {"$lt": inactive_before},
        }).to_list(length=AUTO_CLOSE_BATCH_SIZE)

        closed = 0
        for document in documents:
            conversation = Conversation.model_validate(document)
            try:
                await self._notify(conversation, strings.AUTO_CLOSED)
                await self.conversations.close_conversation(conversation.id, reason=INACTIVITY_REASON)
                await self.store.clear_context(conversation.id)
            except Exception:
                logger.error(f"Failed to auto-close conversation {conversation.id}.", exc_info=True)
                continue
            auto_close_counter.labels(action="closed").inc()
            closed += 1
        return closed

    async def _warn_expiring(self, inactive_before, warn_before) -> int:
        documents = await self.db.conversations.find({
            "status": {"$in": OPEN_STATUSES},
            "updated_at": {"$lt": warn_before, "$gte": inactive_before},
            "auto_close_warning_sent": {"$ne": True},
        }).to_list(length=AUTO_CLOSE_BATCH_SIZE)

        text = strings.AUTO_CLOSE_WARNING.format(minutes=self.warning_minutes)
        warned = 0
        for document in documents:
            conversation = Conversation.model_validate(document)
            try:
                # The warning must not restart the inactivity clock
                await self._notify(conversation, text, touch_conversation=False)
                await self.db.conversations.update_one(
                    {"_id": conversation.id},
                    {"$set": {"auto_close_warning_sent": True, "auto_close_warning_at": now_utc()}},
                )
            except Exception:
                logger.error(f"Failed to warn conversation {conversation.id} before auto-close.", exc_info=True)
                continue
            auto_close_counter.labels(action="warned").inc()
            warned += 1
        return warned

    async def _notify(self, conversation: Conversation, text: str, touch_conversation: bool = True) -> None:
        sender = self.senders.get(conversation.channel)
        external_id = await sender.send_message(conversation.contact_id, text) if sender else None
        await self.conversations.save_message(
            conversation.id, BOT_SENDER, text, external_id=external_id, touch_conversation=touch_conversation
        )


# Globally accessible instance
auto_close_service = AutoCloseService(
    db_service.db,
    conversation_service,
    flow_store,
    {Channel.WHATSAPP: whatsapp_service, Channel.INSTAGRAM: instagram_service},
    enabled=settings.auto_close_enabled,
    inactivity_minutes=settings.auto_close_inactivity_minutes,
    send_warning=settings.auto_close_send_warning,
    warning_minutes=settings.auto_close_warning_minutes,
)
