# /chatbotflex/workflows/engine.py

"""
Bot flow interpreter.

`process_message(graph, inbound_text, context)` runs one conversation turn
against a flow graph and returns a FlowResult carrying the outgoing text, the
updated context and the hand-off / end signals.

The interpreter:
- Never mutates the graph or the context it is given (contexts are immutable
  values; every change produces a new one)
- Performs no I/O: the caller loads the graph and persists the context
- Never raises: configuration problems degrade to a generic reply, and any
  unexpected error returns the default apology with the input context

Two ways of visiting a node:
- replying: the conversation is parked at the node (context.stage) and the
  inbound text answers it
- entering: the turn has just arrived at the node and produces its output
"""

import logging
from typing import List, Optional

from chatbotflex.config import strings
from chatbotflex.models.flow import (
    INITIAL_STAGE,
    MAIN_MENU_STAGE,
    TRANSFER_STAGE,
    ConditionNode,
    ConversationContext,
    EndNode,
    FlowGraph,
    FlowResult,
    InputNode,
    MenuNode,
    MessageNode,
    QuestionNode,
    TransferNode,
    TriggerNode,
)
from chatbotflex.workflows.definitions import LEGACY_MENU_REPLIES
from chatbotflex.workflows.validator import validate_input
from chatbotflex.workflows.variables import (
    contains_keyword,
    resolve_capture_key,
    substitute_variables,
    trigger_matches,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPARTMENT = "Geral"
WELCOME_INTENT = "welcome"
MESSAGE_SEPARATOR = "\n\n"


def _result(message: Optional[str], context: ConversationContext, **signals) -> FlowResult:
    return FlowResult(message=message or None, context=context, **signals)


class FlowInterpreter:
    """Runs turns against one flow graph. Holds no per-conversation state."""

    def __init__(self, graph: Optional[FlowGraph], default_department: str = DEFAULT_DEPARTMENT):
        self.graph = graph
        self.default_department = default_department

    def run(self, inbound_text: str, context: ConversationContext) -> FlowResult:
        if self.graph is None:
            return self._config_error(context, "no active flow is configured")

        if not context.stage or context.stage == INITIAL_STAGE:
            return self._handle_initial(inbound_text, context)

        node = self.graph.get_node(context.stage)
        if node is None:
            logger.info(f"Stage '{context.stage}' is not a node of flow {self.graph.id}; falling back to main menu.")
            return _result(strings.NOT_UNDERSTOOD, context.evolve(stage=MAIN_MENU_STAGE))

        return self._reply(node, inbound_text, context)

    # ==================== Initial turn ====================

    def _handle_initial(self, text: str, context: ConversationContext) -> FlowResult:
        entry = self.graph.entry_node()
        if entry is None:
            return self._config_error(context, f"flow {self.graph.id} has no nodes")

        # The first message of a conversation always starts the flow; keywords
        # only gate a conversation that has been sent back to the initial stage.
        first_turn = not context.last_intent
        if not first_turn and not self._entry_fires(entry, text):
            logger.debug(f"Trigger of flow {self.graph.id} did not match; ignoring message.")
            return _result(None, context)

        if isinstance(entry, TriggerNode):
            target_id = self.graph.next_node_id(entry)
            if target_id is None:
                return self._config_error(context, f"trigger {entry.id} of flow {self.graph.id} has no outgoing edge")
            target = self.graph.get_node(target_id)
            if target is None:
                return self._config_error(
                    context, f"trigger {entry.id} of flow {self.graph.id} points to missing node {target_id}"
                )
            result = self._enter(target, context)
        else:
            result = self._enter(entry, context)

        if not result.context.last_intent:
            result = result.model_copy(update={"context": result.context.evolve(last_intent=WELCOME_INTENT)})
        return result

    def _entry_fires(self, entry, text: str) -> bool:
        if isinstance(entry, TriggerNode):
            return trigger_matches(entry.trigger_type, entry.keywords, text)
        legacy = self.graph.trigger
        if legacy is None or legacy.type == "any" or legacy.value.strip() in ("", "*"):
            return True
        return contains_keyword(text, legacy.value.split(","))

    # ==================== Dispatch ====================

    def _reply(self, node, text: str, context: ConversationContext) -> FlowResult:
        if isinstance(node, MessageNode):
            return self._message(node, context)
        if isinstance(node, InputNode):
            return self._capture(node, text, context)
        if isinstance(node, ConditionNode):
            return self._choose(node, text, context)
        if isinstance(node, MenuNode):
            return self._legacy_menu(node, text, context)
        if isinstance(node, QuestionNode):
            return self._legacy_question(node, text, context)
        if isinstance(node, TransferNode):
            return self._transfer(node, context)
        if isinstance(node, TriggerNode):
            return self._pass_through(node, context)
        return self._end(node, context)

    def _enter(self, node, context: ConversationContext) -> FlowResult:
        if isinstance(node, MessageNode):
            return self._message(node, context)
        if isinstance(node, InputNode):
            return _result(self._input_prompt(node, context), context.evolve(stage=node.id))
        if isinstance(node, ConditionNode):
            return _result(self._with_choices(self._render(node.content, context), node.choices), context.evolve(stage=node.id))
        if isinstance(node, (MenuNode, QuestionNode)):
            return _result(self._render(node.content, context), context.evolve(stage=node.id))
        if isinstance(node, TransferNode):
            return self._transfer(node, context)
        if isinstance(node, TriggerNode):
            return self._pass_through(node, context)
        return self._end(node, context)

    # ==================== Node kinds ====================

    def _message(self, node: MessageNode, context: ConversationContext) -> FlowResult:
        text = self._render(node.content, context)
        next_node = self.graph.next_node(node)

        if next_node is None:
            # Nothing valid to advance to: stay here and re-send this text next turn.
            return _result(text, context.evolve(stage=node.id))

        if isinstance(next_node, MessageNode):
            # Batch with the immediate next message only.
            second = self._render(next_node.content, context)
            after = self.graph.next_node(next_node)
            stage = after.id if after is not None else next_node.id
            combined = MESSAGE_SEPARATOR.join(part for part in (text, second) if part)
            return _result(combined, context.evolve(stage=stage))

        return _result(text, context.evolve(stage=next_node.id))

    def _capture(self, node: InputNode, text: str, context: ConversationContext) -> FlowResult:
        check = validate_input(text, node.validation)
        if not check["is_valid"]:
            logger.debug(f"Input rejected at node {node.id}: {check['error_code']}")
            return _result(strings.INVALID_INPUT.get(node.validation, strings.INVALID_INPUT["text"]), context)

        key = resolve_capture_key(node.variable_name, node.label)
        updated = context.with_variable(key, text.strip())

        next_node = self.graph.next_node(node)
        if next_node is None:
            return _result(strings.INPUT_THANKS, updated)
        return self._enter(next_node, updated)

    def _choose(self, node: ConditionNode, text: str, context: ConversationContext) -> FlowResult:
        choice = (text or "").strip()
        choices = node.choices
        if choice not in choices:
            return _result(self._with_choices(strings.INVALID_OPTION, choices), context)

        edge = self.graph.edge_for_label(node.id, choice)
        target = self.graph.get_node(edge.target) if edge is not None else None
        if target is None:
            logger.error(f"Condition node {node.id} of flow {self.graph.id} has no usable edge for choice '{choice}'.")
            return _result(strings.MISCONFIGURED_OPTION, context)

        return self._enter(target, context.evolve(last_intent=choice))

    def _legacy_menu(self, node: MenuNode, text: str, context: ConversationContext) -> FlowResult:
        try:
            index = int((text or "").strip()) - 1
        except ValueError:
            index = -1

        if not 0 <= index < len(node.options):
            return _result(f"{strings.INVALID_OPTION}{MESSAGE_SEPARATOR}{self._render(node.content, context)}".strip(), context)

        updated = context.with_variable("lastChoice", node.options[index])
        if node.next_node:
            target = self.graph.get_node(node.next_node)
            if target is not None:
                return self._enter(target, updated)

        reply = LEGACY_MENU_REPLIES.get(str(index + 1))
        if reply is None:
            return _result(strings.INVALID_MENU_OPTION, updated)
        return _result(
            reply["message"],
            updated.evolve(stage=reply["stage"]),
            transfer_to_human=reply["transfer"],
            department=self.default_department if reply["transfer"] else None,
        )

    def _legacy_question(self, node: QuestionNode, text: str, context: ConversationContext) -> FlowResult:
        updated = context.with_variable(node.id, text)
        next_node = self.graph.next_node(node)
        if next_node is None:
            return _result(strings.INPUT_THANKS, updated)
        return self._enter(next_node, updated)

    def _transfer(self, node: TransferNode, context: ConversationContext) -> FlowResult:
        message = self._render(node.label or node.content, context) or strings.TRANSFER_DEFAULT
        department = node.department or node.content or self.default_department
        return _result(
            message,
            context.evolve(stage=TRANSFER_STAGE),
            transfer_to_human=True,
            department=department,
        )

    def _pass_through(self, node: TriggerNode, context: ConversationContext) -> FlowResult:
        target = self.graph.next_node(node)
        if target is None or isinstance(target, TriggerNode):
            return _result(None, context)
        return self._enter(target, context)

    def _end(self, node: EndNode, context: ConversationContext) -> FlowResult:
        return _result(self._render(node.content, context), context.evolve(stage=node.id), end_conversation=True)

    # ==================== Helpers ====================

    def _render(self, text: Optional[str], context: Optional[ConversationContext] = None) -> str:
        return substitute_variables(text, context.user_data if context else {})

    def _input_prompt(self, node: InputNode, context: ConversationContext) -> str:
        prompt = self._render(node.content, context)
        if prompt:
            return prompt
        if node.label and node.label.strip():
            return strings.INPUT_PROMPT_LABEL.format(label=node.label.strip().lower())
        return strings.INPUT_PROMPT_DEFAULT

    @staticmethod
    def _with_choices(header: str, choices: List[str]) -> str:
        lines = "\n".join(f"• {choice}" for choice in choices)
        return f"{header or strings.CHOOSE_OPTION}{MESSAGE_SEPARATOR}{lines}" if lines else header

    def _config_error(self, context: ConversationContext, reason: str) -> FlowResult:
        logger.critical(f"Flow configuration error: {reason}.")
        return _result(strings.CONFIG_ERROR, context)


def process_message(
    graph: Optional[FlowGraph],
    inbound_text: str,
    context: ConversationContext,
    default_department: str = DEFAULT_DEPARTMENT,
) -> FlowResult:
    """
    Run one turn of the bot flow.

    Args:
        graph: The active flow graph, or None when no flow is active
        inbound_text: What the end user sent
        context: The conversation's current context

    Returns:
        FlowResult; on any unexpected error, the default apology paired with
        the unchanged input context
    """
    try:
        return FlowInterpreter(graph, default_department).run(inbound_text or "", context)
    except Exception:
        logger.exception(f"Flow engine failed at stage '{context.stage}'.")
        return _result(strings.DEFAULT_APOLOGY, context)
