# /chatbotflex/models/flow.py

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Stage sentinels that are not node ids
INITIAL_STAGE = "initial"
TRANSFER_STAGE = "transfer"
MAIN_MENU_STAGE = "main_menu"

NODE_TYPES = ("trigger", "message", "input", "condition", "transfer", "menu", "question", "end")

ValidationKind = Literal["text", "email", "phone", "number"]


class BaseNode(BaseModel):
    """Fields shared by every node kind."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Node id, unique within the graph")
    content: Optional[str] = Field(default=None, description="Outgoing text, may contain {variable} placeholders")
    next_node: Optional[str] = Field(default=None, alias="nextNode", description="Legacy explicit link to the next node")


class TriggerNode(BaseNode):
    type: Literal["trigger"] = "trigger"
    trigger_type: Literal["any", "keyword"] = Field(default="any", alias="triggerType")
    keywords: List[str] = Field(default_factory=list)


class MessageNode(BaseNode):
    type: Literal["message"] = "message"


class InputNode(BaseNode):
    type: Literal["input"] = "input"
    variable_name: Optional[str] = Field(default=None, alias="variableName")
    validation: ValidationKind = "text"
    label: Optional[str] = None


class ConditionNode(BaseNode):
    type: Literal["condition"] = "condition"
    conditions: List[str] = Field(default_factory=list)
    options: List[str] = Field(default_factory=list)

    @property
    def choices(self) -> List[str]:
        return self.conditions or self.options


class MenuNode(BaseNode):
    type: Literal["menu"] = "menu"
    options: List[str] = Field(default_factory=list)


class QuestionNode(BaseNode):
    type: Literal["question"] = "question"


class TransferNode(BaseNode):
    type: Literal["transfer"] = "transfer"
    department: Optional[str] = None
    label: Optional[str] = None


class EndNode(BaseNode):
    type: Literal["end"] = "end"


FlowNode = Annotated[
    Union[TriggerNode, MessageNode, InputNode, ConditionNode, MenuNode, QuestionNode, TransferNode, EndNode],
    Field(discriminator="type"),
]


class Edge(BaseModel):
    """Directed connection between two nodes. Labels are only read by condition nodes."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None


class FlowTrigger(BaseModel):
    """Flow-level trigger kept for flows authored before trigger nodes existed."""
    type: str = "keyword"
    value: str = ""


class FlowGraph(BaseModel):
    """Typed view of a stored flow document, as handed to the interpreter."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    is_active: bool = Field(default=False, alias="isActive")
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    trigger: Optional[FlowTrigger] = None

    def get_node(self, node_id: Optional[str]):
        if not node_id:
            return None
        return next((node for node in self.nodes if node.id == node_id), None)

    def trigger_node(self) -> Optional[TriggerNode]:
        return next((node for node in self.nodes if isinstance(node, TriggerNode)), None)

    def entry_node(self):
        """The trigger node, or the first node when the graph has no trigger."""
        return self.trigger_node() or (self.nodes[0] if self.nodes else None)

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def next_node_id(self, node) -> Optional[str]:
        """Target of the node's first outgoing edge, falling back to its legacy nextNode."""
        edges = self.outgoing_edges(node.id)
        if edges:
            return edges[0].target
        return node.next_node

    def next_node(self, node):
        """Resolves the next node; a dangling reference resolves to None."""
        return self.get_node(self.next_node_id(node))

    def edge_for_label(self, node_id: str, label: str) -> Optional[Edge]:
        return next((edge for edge in self.outgoing_edges(node_id) if edge.label == label), None)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "FlowGraph":
        """
        Maps a stored flow document (as authored in the admin console) into the typed graph.

        Type-specific parameters live in each node's free-form `data` map in storage;
        they are lifted into the typed node fields here so the interpreter never
        reads raw dictionaries.
        """
        nodes = []
        for raw in document.get("nodes") or []:
            node = node_from_document(raw)
            if node is not None:
                nodes.append(node)

        edges = []
        for raw in document.get("edges") or []:
            if not isinstance(raw, dict) or not raw.get("source") or not raw.get("target"):
                logger.warning(f"Skipping malformed edge in flow {document.get('id')}: {raw}")
                continue
            label = raw.get("label")
            edges.append(Edge(
                id=raw.get("id"),
                source=str(raw["source"]),
                target=str(raw["target"]),
                label=str(label).strip() if label is not None else None,
            ))

        trigger = document.get("trigger")
        return cls(
            id=str(document.get("id") or document.get("_id") or ""),
            name=document.get("name") or "",
            is_active=bool(document.get("isActive", False)),
            nodes=nodes,
            edges=edges,
            trigger=FlowTrigger(
                type=str(trigger.get("type") or "keyword"),
                value=str(trigger.get("value") or ""),
            ) if isinstance(trigger, dict) else None,
        )


def _clean_list(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def node_from_document(raw: Dict[str, Any]):
    """Builds one typed node from its stored form. Returns None for nodes without an id."""
    if not isinstance(raw, dict) or not raw.get("id"):
        logger.warning(f"Skipping node without id: {raw}")
        return None

    data = raw.get("data") or {}
    node_type = raw.get("type") or data.get("type")
    common = {
        "id": str(raw["id"]),
        "next_node": raw.get("nextNode") or data.get("nextNode"),
    }
    content = raw.get("content") if raw.get("content") is not None else data.get("content")

    if node_type == "trigger":
        keywords = _clean_list(data.get("keywords"))
        trigger_type = data.get("triggerType")
        if trigger_type in ("keyword", "keywords"):
            trigger_type = "keyword"
        elif trigger_type != "any":
            trigger_type = "keyword" if keywords else "any"
        return TriggerNode(**common, content=content, trigger_type=trigger_type, keywords=keywords)

    if node_type == "input":
        validation = data.get("validation") or "text"
        if validation not in ("text", "email", "phone", "number"):
            validation = "text"
        return InputNode(
            **common,
            content=content,
            variable_name=data.get("variableName") or None,
            validation=validation,
            label=data.get("label"),
        )

    if node_type == "transfer":
        return TransferNode(**common, content=content, department=data.get("department") or None, label=data.get("label"))

    # The console stores the visible text of these nodes in data.label
    if content is None:
        content = data.get("label")

    if node_type == "message":
        return MessageNode(**common, content=content)
    if node_type == "condition":
        return ConditionNode(
            **common,
            content=content,
            conditions=_clean_list(data.get("conditions")),
            options=_clean_list(raw.get("options") or data.get("options")),
        )
    if node_type == "menu":
        return MenuNode(**common, content=content, options=_clean_list(raw.get("options") or data.get("options")))
    if node_type == "question":
        return QuestionNode(**common, content=content)
    if node_type != "end":
        logger.warning(f"Unknown node type '{node_type}' on node {raw['id']}; treating it as an end node.")
    return EndNode(**common, content=content)


class ConversationContext(BaseModel):
    """
    Per-conversation bot state carried between turns.

    Immutable: the engine returns an updated copy via `evolve` and never
    mutates the context it was given.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stage: str = Field(default=INITIAL_STAGE, description="Node id the conversation is at, or a stage sentinel")
    user_data: Dict[str, Any] = Field(default_factory=dict, alias="userData", description="Captured variables")
    last_intent: str = Field(default="", alias="lastIntent", description="Last classified intent or choice")

    def evolve(self, **changes: Any) -> "ConversationContext":
        """Returns a copy with the given fields replaced."""
        if "user_data" in changes:
            changes["user_data"] = dict(changes["user_data"])
        return self.model_copy(update=changes)

    def with_variable(self, key: str, value: str) -> "ConversationContext":
        return self.evolve(user_data={**self.user_data, key: value})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class FlowResult(BaseModel):
    """Outcome of one interpreter turn."""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, alias="outboundText")
    context: ConversationContext
    transfer_to_human: bool = Field(default=False, alias="transferToHuman")
    department: Optional[str] = None
    end_conversation: bool = Field(default=False, alias="endConversation")
