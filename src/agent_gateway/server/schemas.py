"""Pydantic request/response schemas for the gateway API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from agent_gateway.runtime.catalog import AgentMetadata


# ── Chat schemas ─────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    """POST /chat/stream and /agents/{id}/chat/stream – send a message."""
    message: str = Field(..., min_length=1)
    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationId", "conversation_id"),
    )
    # imageDataUris is the field name older clients send
    image_attachments: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("imageAttachments", "imageDataUris", "image_attachments"),
    )

    model_config = {"frozen": True}

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value

    @field_validator("conversation_id")
    @classmethod
    def _blank_conversation_is_new(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


# ── Agent schemas ────────────────────────────────────────────────────────────

class AgentListOut(BaseModel):
    """GET /agents – available agents."""
    agents: List[AgentMetadata]
    count: int


# ── Infra schemas ────────────────────────────────────────────────────────────

class HealthOut(BaseModel):
    status: str = "healthy"
    timestamp: datetime
    cached_sessions: int = Field(default=0, serialization_alias="cachedSessions")
