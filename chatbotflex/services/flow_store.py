# /chatbotflex/services/flow_store.py

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from chatbotflex.models.flow import ConversationContext, FlowGraph
from chatbotflex.services.db_service import db_service, new_id, now_utc
from chatbotflex.utils.metrics import database_operations_counter
from chatbotflex.workflows.validator import validate_flow_graph

logger = logging.getLogger(__name__)

BOT_CONFIG_ID = "bot_config"
FLOW_LIST_LIMIT = 200
# Fields a client may not set directly on a stored flow
PROTECTED_FIELDS = ("_id", "id", "isActive", "created_at", "updated_at")


class FlowValidationError(Exception):
    """An authored flow graph was rejected; `problems` lists every issue found."""

    def __init__(self, problems: List[str]):
        super().__init__("; ".join(problems))
        self.problems = problems


def _public(document: Dict[str, Any]) -> Dict[str, Any]:
    """Stored flow -> API/graph shape (`_id` exposed as `id`)."""
    flow = dict(document)
    flow["id"] = str(flow.pop("_id"))
    return flow


class FlowStore:
    """
    Persistence for flow graphs, the active-flow pointer and per-conversation
    bot context.

    Which flow is live is recorded once, as `active_flow_id` in the
    `settings/bot_config` document; the `isActive` flag on flows mirrors it
    for the admin console. Stores written before the pointer existed only have
    the flag, so it is used as a fallback.
    """

    def __init__(self, database):
        self.db = database

    # ==================== Active flow ====================

    async def get_active_flow_id(self) -> Optional[str]:
        config = await self.db.settings.find_one({"_id": BOT_CONFIG_ID})
        return (config or {}).get("active_flow_id")

    async def load_active_flow_graph(self) -> Optional[FlowGraph]:
        """The graph the bot should run, or None when nothing is active."""
        flow_id = await self.get_active_flow_id()
        if flow_id:
            document = await self.db.flows.find_one({"_id": flow_id})
            if document is None:
                logger.error(f"Active flow pointer references missing flow {flow_id}.")
                return None
        else:
            active = await self.db.flows.find({"isActive": True}).sort("updated_at", -1).to_list(length=2)
            if len(active) > 1:
                logger.warning(
                    f"More than one flow is flagged active and no active_flow_id is set; using {active[0]['_id']}."
                )
            document = active[0] if active else None

        if document is None:
            return None
        database_operations_counter.labels(operation="load_active_flow", status="success").inc()
        return FlowGraph.from_document(_public(document))

    async def activate_flow(self, flow_id: str) -> bool:
        """Makes `flow_id` the only active flow. Returns False if it does not exist."""
        result = await self.db.flows.update_one(
            {"_id": flow_id}, {"$set": {"isActive": True, "updated_at": now_utc()}}
        )
        if result.matched_count == 0:
            return False
        await self.db.flows.update_many(
            {"_id": {"$ne": flow_id}, "isActive": True}, {"$set": {"isActive": False}}
        )
        await self.db.settings.update_one(
            {"_id": BOT_CONFIG_ID},
            {"$set": {"active_flow_id": flow_id, "updated_at": now_utc()}},
            upsert=True,
        )
        logger.info(f"Flow {flow_id} is now the active bot flow.")
        return True

    async def deactivate_flow(self, flow_id: str) -> bool:
        result = await self.db.flows.update_one(
            {"_id": flow_id}, {"$set": {"isActive": False, "updated_at": now_utc()}}
        )
        if result.matched_count == 0:
            return False
        await self.db.settings.update_one(
            {"_id": BOT_CONFIG_ID, "active_flow_id": flow_id},
            {"$unset": {"active_flow_id": ""}},
        )
        logger.info(f"Flow {flow_id} deactivated.")
        return True

    # ==================== Flow CRUD ====================

    async def list_flows(self) -> List[Dict[str, Any]]:
        documents = await self.db.flows.find({}).sort("updated_at", -1).to_list(length=FLOW_LIST_LIMIT)
        return [_public(document) for document in documents]

    async def get_flow(self, flow_id: str) -> Optional[Dict[str, Any]]:
        document = await self.db.flows.find_one({"_id": flow_id})
        return _public(document) if document else None

    async def create_flow(self, flow: Dict[str, Any]) -> Dict[str, Any]:
        """
        Stores a new flow. Raises FlowValidationError if the graph is malformed.

        A flow submitted with isActive=true is activated after it is stored.
        """
        self._validate(flow)
        timestamp = now_utc()
        document = {key: value for key, value in flow.items() if key not in PROTECTED_FIELDS}
        document.update({"_id": new_id(), "isActive": False, "created_at": timestamp, "updated_at": timestamp})

        await self.db.flows.insert_one(document)
        database_operations_counter.labels(operation="create_flow", status="success").inc()
        logger.info(f"Flow '{document.get('name')}' created with id {document['_id']}.")

        if flow.get("isActive"):
            await self.activate_flow(document["_id"])
            document["isActive"] = True
        return _public(document)

    async def update_flow(self, flow_id: str, flow: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Replaces the authored content of a flow. Returns None if it does not exist."""
        self._validate(flow)
        changes = {key: value for key, value in flow.items() if key not in PROTECTED_FIELDS}
        changes["updated_at"] = now_utc()

        result = await self.db.flows.update_one({"_id": flow_id}, {"$set": changes})
        if result.matched_count == 0:
            return None
        database_operations_counter.labels(operation="update_flow", status="success").inc()

        if flow.get("isActive"):
            await self.activate_flow(flow_id)
        return await self.get_flow(flow_id)

    async def delete_flow(self, flow_id: str) -> bool:
        result = await self.db.flows.delete_one({"_id": flow_id})
        if result.deleted_count == 0:
            return False
        await self.db.settings.update_one(
            {"_id": BOT_CONFIG_ID, "active_flow_id": flow_id},
            {"$unset": {"active_flow_id": ""}},
        )
        logger.info(f"Flow {flow_id} deleted.")
        return True

    @staticmethod
    def _validate(flow: Dict[str, Any]) -> None:
        problems = validate_flow_graph(flow)
        if problems:
            raise FlowValidationError(problems)

    # ==================== Conversation context ====================

    async def load_context(self, conversation_id: str) -> ConversationContext:
        """Stored context of a conversation; defaults when absent or unreadable."""
        document = await self.db.conversations.find_one({"_id": conversation_id}, {"botContext": 1})
        raw = (document or {}).get("botContext")
        if not raw:
            return ConversationContext()
        try:
            return ConversationContext.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable bot context of conversation {conversation_id}: {e}")
            return ConversationContext()

    async def save_context(self, conversation_id: str, context: ConversationContext) -> None:
        await self.db.conversations.update_one(
            {"_id": conversation_id},
            {"$set": {"botContext": context.to_document(), "updated_at": now_utc()}},
        )

    async def clear_context(self, conversation_id: str) -> None:
        await self.save_context(conversation_id, ConversationContext())


# Globally accessible instance
flow_store = FlowStore(db_service.db)
