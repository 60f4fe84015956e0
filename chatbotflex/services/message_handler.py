# /chatbotflex/services/message_handler.py

import asyncio
import logging
from collections import defaultdict
from typing import DefaultDict, Dict

from chatbotflex.config.settings import settings
from chatbotflex.models.conversation import Channel, Conversation, ConversationStatus, InboundMessage
from chatbotflex.services.cache_service import CacheService, cache_service
from chatbotflex.services.conversation_service import BOT_SENDER, ConversationService, conversation_service
from chatbotflex.services.flow_service import FlowService, flow_service
from chatbotflex.services.flow_store import FlowStore, flow_store
from chatbotflex.services.instagram_service import instagram_service
from chatbotflex.services.queue_service import QueueService, queue_service
from chatbotflex.services.whatsapp_service import whatsapp_service
from chatbotflex.utils.metrics import inbound_messages_counter

logger = logging.getLogger(__name__)


class MessageHandler:
    """
    Orchestrates one inbound message: record it, and while the conversation
    is in bot mode run a flow turn and act on its result.

    Turns of the same conversation run one at a time (keyed by channel and
    sender, so the conversation lookup itself is covered); different
    conversations proceed concurrently.
    """

    def __init__(
        self,
        conversations: ConversationService,
        store: FlowStore,
        flows: FlowService,
        queue: QueueService,
        cache: CacheService,
        senders: Dict[Channel, object],
    ):
        self.conversations = conversations
        self.store = store
        self.flows = flows
        self.queue = queue
        self.cache = cache
        self.senders = senders
        self._locks: DefaultDict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: DefaultDict[str, int] = defaultdict(int)

    async def handle_incoming_message(self, inbound: InboundMessage) -> None:
        """Entry point for webhook background tasks. Errors are logged, never raised."""
        channel = inbound.channel.value
        if inbound.from_me:
            logger.debug(f"Ignoring {channel} message {inbound.message_id} sent by the business.")
            return

        if not await self.cache.claim_message(channel, inbound.message_id, settings.processed_message_ttl_seconds):
            logger.info(f"Ignoring redelivered {channel} message {inbound.message_id}.")
            inbound_messages_counter.labels(channel=channel, status="duplicate").inc()
            return

        inbound_messages_counter.labels(channel=channel, status="received").inc()
        key = f"{channel}:{inbound.sender_id}"
        self._lock_users[key] += 1
        try:
            async with self._locks[key]:
                await self._handle(inbound)
        except Exception:
            inbound_messages_counter.labels(channel=channel, status="error").inc()
            logger.exception(f"Failed to handle {channel} message {inbound.message_id} from {inbound.sender_id}.")
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                self._locks.pop(key, None)

    async def _handle(self, inbound: InboundMessage) -> None:
        conversation = await self.conversations.get_or_create_conversation(inbound)
        await self.conversations.save_message(
            conversation.id, inbound.sender_id, inbound.text, inbound.message_type, inbound.message_id
        )

        if conversation.status != ConversationStatus.BOT:
            logger.info(f"Conversation {conversation.id} is {conversation.status.value}; bot stays silent.")
            return

        await self._run_bot_turn(conversation, inbound)

    async def _run_bot_turn(self, conversation: Conversation, inbound: InboundMessage) -> None:
        context = await self.store.load_context(conversation.id)
        result = await self.flows.process_message(inbound.text, context)
        await self.store.save_context(conversation.id, result.context)

        if result.message:
            sender = self.senders[inbound.channel]
            external_id = await sender.send_message(inbound.sender_id, result.message)
            await self.conversations.save_message(conversation.id, BOT_SENDER, result.message, external_id=external_id)

        if result.transfer_to_human:
            logger.info(f"Conversation {conversation.id} handed off to department '{result.department}'.")
            await self.queue.auto_assign_conversation(conversation.id, result.department)

        if result.end_conversation:
            await self.conversations.close_conversation(conversation.id)
            await self.store.clear_context(conversation.id)


# Globally accessible instance
message_handler = MessageHandler(
    conversation_service,
    flow_store,
    flow_service,
    queue_service,
    cache_service,
    {Channel.WHATSAPP: whatsapp_service, Channel.INSTAGRAM: instagram_service},
)
