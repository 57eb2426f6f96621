"""
Data models for chat functionality
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from trip_assistant.models.catalog import TravelProduct


class ChatRequest(BaseModel):
    """Chat request model"""
    query: str = Field(..., min_length=1, max_length=500)
    session_id: Optional[str] = None


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class EntryStatus(str, Enum):
    FINAL = "final"
    STREAMING = "streaming"


class SessionPhase(str, Enum):
    """Per-turn state of a conversation session"""
    IDLE = "idle"
    CLASSIFYING = "classifying"
    REJECTED = "rejected"
    CLASSIFICATION_FAILED = "classification_failed"
    RECOMMENDING = "recommending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class TextSegment(BaseModel):
    """Markdown text run; ``warning`` marks an inline unknown-product notice"""
    type: Literal["text"] = "text"
    text: str
    warning: bool = False


class ProductSegment(BaseModel):
    """Product card position"""
    type: Literal["product"] = "product"
    product_id: str
    product: Optional[TravelProduct] = None


RenderSegment = Annotated[Union[TextSegment, ProductSegment], Field(discriminator="type")]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationEntry(BaseModel):
    """One user or assistant turn"""
    id: str
    role: Role
    content: str = ""  # user text, or placeholder-substituted assistant document
    render_document: List[RenderSegment] = Field(default_factory=list)
    referenced_ids: List[str] = Field(default_factory=list)  # unique, first-occurrence order
    status: EntryStatus = EntryStatus.FINAL
    created_at: datetime = Field(default_factory=_utcnow)


class SessionEvent(BaseModel):
    """Change published by a conversation session"""
    type: str  # "entry_added", "entry_updated", "entry_removed", "phase_changed"
    session_id: str
    phase: SessionPhase
    entry: Optional[ConversationEntry] = None


class SessionSnapshot(BaseModel):
    """Session state returned by the API"""
    session_id: str
    phase: SessionPhase
    busy: bool
    entries: List[ConversationEntry]
