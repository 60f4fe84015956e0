# /chatbotflex/services/queue_service.py

import logging
from typing import List, Optional

from chatbotflex.config.settings import settings
from chatbotflex.models.conversation import (
    ASSIGNABLE_OPERATOR_STATUSES,
    ASSIGNABLE_ROLES,
    ConversationStatus,
    Operator,
    QueueConfig,
)
from chatbotflex.services.db_service import db_service, now_utc
from chatbotflex.utils.metrics import handoffs_counter

logger = logging.getLogger(__name__)

QUEUE_CONFIG_ID = "queue_config"
ACTIVE_CHAT_STATUSES = [ConversationStatus.HUMAN.value, ConversationStatus.WAITING.value]
WAITING_BATCH_SIZE = 10


class QueueService:
    """
    Assigns handed-off conversations to human operators.

    Distribution strategies:
    - round-robin: rotates through the available operators
    - least-busy: fewest active chats wins (first listed on ties)
    - skill-based: most matched skills, then least busy
    """

    def __init__(self, database, default_department: str):
        self.db = database
        self.default_department = default_department
        self._last_assigned_index = 0

    # ==================== Configuration ====================

    async def get_queue_config(self) -> QueueConfig:
        try:
            document = await self.db.settings.find_one({"_id": QUEUE_CONFIG_ID})
        except Exception as e:
            logger.error(f"Failed to read queue configuration: {e}")
            return QueueConfig()
        if not document:
            return QueueConfig()
        document.pop("_id", None)
        return QueueConfig.model_validate(document)

    # ==================== Operators ====================

    async def get_available_operators(self, department: Optional[str] = None) -> List[Operator]:
        """Online operators of the department that are below their chat limit."""
        config = await self.get_queue_config()
        query = {
            "role": {"$in": list(ASSIGNABLE_ROLES)},
            "status": {"$in": list(ASSIGNABLE_OPERATOR_STATUSES)},
        }
        if department:
            query["department"] = department

        try:
            users = await self.db.users.find(query).to_list(length=None)
            operators = []
            for user in users:
                current_chats = await self.db.conversations.count_documents(
                    {"assigned_to": user["_id"], "status": {"$in": ACTIVE_CHAT_STATUSES}}
                )
                max_chats = user.get("max_chats") or config.max_chats_per_operator
                if current_chats < max_chats:
                    operators.append(Operator.model_validate(
                        {**user, "current_chats": current_chats, "max_chats": max_chats}
                    ))
            return operators
        except Exception as e:
            logger.error(f"Failed to list available operators: {e}", exc_info=True)
            return []

    async def select_best_operator(
        self,
        department: Optional[str] = None,
        required_skills: Optional[List[str]] = None,
        config: Optional[QueueConfig] = None,
    ) -> Optional[Operator]:
        config = config or await self.get_queue_config()
        operators = await self.get_available_operators(department)
        if not operators:
            logger.warning(f"No operator available for department '{department or 'any'}'.")
            return None

        if required_skills:
            skilled = [op for op in operators if any(skill in op.skills for skill in required_skills)]
            if skilled:
                operators = skilled
            else:
                logger.warning("No available operator has the required skills; considering everyone.")

        strategy = config.distribution_strategy
        if strategy == "round-robin":
            return self._select_round_robin(operators)
        if strategy == "skill-based":
            return self._select_by_skill(operators, required_skills)
        return self._select_least_busy(operators)

    def _select_round_robin(self, operators: List[Operator]) -> Operator:
        self._last_assigned_index = (self._last_assigned_index + 1) % len(operators)
        return operators[self._last_assigned_index]

    @staticmethod
    def _select_least_busy(operators: List[Operator]) -> Operator:
        return min(operators, key=lambda op: op.current_chats)

    def _select_by_skill(self, operators: List[Operator], required_skills: Optional[List[str]]) -> Operator:
        if not required_skills:
            return self._select_least_busy(operators)
        return min(
            operators,
            key=lambda op: (-sum(1 for skill in required_skills if skill in op.skills), op.current_chats),
        )

    # ==================== Assignment ====================

    async def auto_assign_conversation(
        self,
        conversation_id: str,
        department: Optional[str] = None,
        required_skills: Optional[List[str]] = None,
    ) -> bool:
        """
        Hands a conversation to the best operator. When auto-assignment is off
        or nobody is free it waits in the queue instead. Returns True when an
        operator was assigned.
        """
        department = department or self.default_department
        config = await self.get_queue_config()

        operator = None
        if config.enabled and config.auto_assign_enabled:
            operator = await self.select_best_operator(department, required_skills, config)
        else:
            logger.info("Automatic assignment is disabled; conversation stays in the waiting queue.")

        if operator is None:
            if await self._mark_waiting(conversation_id, department):
                handoffs_counter.labels(department=department, assigned="false").inc()
            return False

        timestamp = now_utc()
        await self.db.conversations.update_one(
            {"_id": conversation_id},
            {"$set": {
                "status": ConversationStatus.HUMAN.value,
                "assigned_to": operator.id,
                "assigned_at": timestamp,
                "department": department,
                "updated_at": timestamp,
            }},
        )
        handoffs_counter.labels(department=department, assigned="true").inc()
        logger.info(f"Conversation {conversation_id} assigned to operator {operator.name or operator.id}.")
        return True

    async def _mark_waiting(self, conversation_id: str, department: str) -> bool:
        """Queues the conversation. Returns False when it was already waiting."""
        timestamp = now_utc()
        # A retry leaves the queue position and last activity untouched
        result = await self.db.conversations.update_one(
            {"_id": conversation_id, "status": {"$ne": ConversationStatus.WAITING.value}},
            {"$set": {
                "status": ConversationStatus.WAITING.value,
                "department": department,
                "waiting_since": timestamp,
                "updated_at": timestamp,
            }},
        )
        return bool(result.modified_count)

    async def process_waiting_queue(self) -> int:
        """Retries assignment for the longest-waiting conversations. Returns how many were assigned."""
        config = await self.get_queue_config()
        if not (config.enabled and config.auto_assign_enabled):
            return 0

        waiting = await self.db.conversations.find(
            {"status": ConversationStatus.WAITING.value}
        ).sort("waiting_since", 1).to_list(length=WAITING_BATCH_SIZE)

        assigned = 0
        for conversation in waiting:
            if await self.auto_assign_conversation(
                conversation["_id"], conversation.get("department"), conversation.get("required_skills")
            ):
                assigned += 1
        if waiting:
            logger.info(f"Waiting queue pass: {assigned} of {len(waiting)} conversations assigned.")
        return assigned


# Globally accessible instance
queue_service = QueueService(db_service.db, settings.default_department)
