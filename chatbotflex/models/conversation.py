# /chatbotflex/models/conversation.py

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from chatbotflex.models.flow import ConversationContext


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"


class ConversationStatus(str, Enum):
    """Who owns the conversation right now."""
    BOT = "bot"
    WAITING = "waiting"
    HUMAN = "human"
    CLOSED = "closed"


class OperatorStatus(str, Enum):
    ONLINE = "online"
    AVAILABLE = "available"
    AWAY = "away"
    OFFLINE = "offline"


ASSIGNABLE_OPERATOR_STATUSES = (OperatorStatus.ONLINE.value, OperatorStatus.AVAILABLE.value)
ASSIGNABLE_ROLES = ("operator", "supervisor", "admin")


class InboundMessage(BaseModel):
    """One inbound chat message, normalized across channels."""
    channel: Channel
    sender_id: str = Field(..., description="Phone number (WhatsApp) or IGSID (Instagram)")
    message_id: str
    text: str = ""
    message_type: str = "text"
    sender_name: Optional[str] = None
    from_me: bool = False
    timestamp: Optional[datetime] = None


class Conversation(BaseModel):
    """Stored conversation between one end user and the business on one channel."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    channel: Channel = Channel.WHATSAPP
    contact_id: str = Field(..., description="Channel-specific end user id")
    contact_name: Optional[str] = None
    status: ConversationStatus = ConversationStatus.BOT
    department: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    waiting_since: Optional[datetime] = None
    bot_context: ConversationContext = Field(default_factory=ConversationContext, alias="botContext")
    tags: List[str] = Field(default_factory=list)
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_reason: Optional[str] = None
    auto_close_warning_sent: bool = False


class Operator(BaseModel):
    """A human agent that conversations can be assigned to."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: str = ""
    role: str = "operator"
    status: str = OperatorStatus.OFFLINE.value
    department: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    current_chats: int = 0
    max_chats: Optional[int] = None


class QueueConfig(BaseModel):
    enabled: bool = True
    max_chats_per_operator: int = 5
    distribution_strategy: str = Field(default="least-busy", pattern="^(round-robin|least-busy|skill-based)$")
    auto_assign_enabled: bool = True
