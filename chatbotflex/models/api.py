# /chatbotflex/models/api.py

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from chatbotflex.models.flow import ConversationContext

# Request and response bodies for the admin API.


class LoginRequest(BaseModel):
    password: str = Field(..., min_length=12, max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str


class FlowEdgeIn(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None


class FlowNodeIn(BaseModel):
    """A node as authored in the visual editor. Type-specific settings stay in `data`."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    content: Optional[str] = None
    options: Optional[List[str]] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    next_node: Optional[str] = Field(default=None, alias="nextNode")
    position: Optional[Dict[str, float]] = None


class FlowTriggerIn(BaseModel):
    type: str = Field(default="keyword", pattern="^(keyword|keywords|intent|any)$")
    value: str = ""

    @field_validator("type")
    @classmethod
    def normalize_keyword_type(cls, v):
        # The flow editor saves keyword triggers as "keywords"
        return "keyword" if v == "keywords" else v


class FlowDocument(BaseModel):
    """Body of create / update flow requests."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    is_active: bool = Field(default=False, alias="isActive")
    nodes: List[FlowNodeIn] = Field(default_factory=list)
    edges: List[FlowEdgeIn] = Field(default_factory=list)
    trigger: Optional[FlowTriggerIn] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SimulateRequest(BaseModel):
    """Runs one interpreter turn against a stored flow without side effects."""
    text: str = Field(..., max_length=4096)
    context: ConversationContext = Field(default_factory=ConversationContext)
