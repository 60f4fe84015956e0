# /chatbotflex/services/flow_service.py

import logging
from typing import Optional

from chatbotflex.config import strings
from chatbotflex.config.settings import settings
from chatbotflex.models.flow import ConversationContext, FlowGraph, FlowResult
from chatbotflex.services.flow_store import FlowStore, flow_store
from chatbotflex.utils.metrics import flow_turns_counter
from chatbotflex.workflows import engine

logger = logging.getLogger(__name__)


def _outcome(result: FlowResult) -> str:
    if result.transfer_to_human:
        return "transfer"
    if result.end_conversation:
        return "end"
    return "reply" if result.message else "silent"


class FlowService:
    """Loads the active flow and runs one interpreter turn against it."""

    def __init__(self, store: FlowStore, default_department: str):
        self.store = store
        self.default_department = default_department

    async def process_message(self, inbound_text: str, context: ConversationContext) -> FlowResult:
        """
        Async entry point used by the message handler. Never raises: a store
        failure yields the default apology with the context unchanged.
        """
        try:
            graph = await self.store.load_active_flow_graph()
        except Exception:
            logger.exception("Could not load the active flow.")
            flow_turns_counter.labels(outcome="error").inc()
            return FlowResult(message=strings.DEFAULT_APOLOGY, context=context)

        result = self.run(graph, inbound_text, context)
        flow_turns_counter.labels(outcome=_outcome(result)).inc()
        return result

    def run(self, graph: Optional[FlowGraph], inbound_text: str, context: ConversationContext) -> FlowResult:
        """Runs a turn against an explicit graph (also used by the simulator)."""
        return engine.process_message(graph, inbound_text, context, self.default_department)


# Globally accessible instance
flow_service = FlowService(flow_store, settings.default_department)
