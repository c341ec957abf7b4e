"""Domain events relayed to the caller while a chat run streams.

Every event knows its own wire shape (``to_dict``); the framer only adds the
SSE envelope. Field names in ``to_dict`` are part of the client contract.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Literal, Union

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Raw token counts reported by the runtime for one completed run."""
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class UsageStats(BaseModel):
    """Token usage plus wall-clock duration of a run, as sent to the client."""
    duration_ms: float = Field(ge=0)
    prompt_tokens: int = Field(ge=0)
    completion_tokens: int = Field(ge=0)
    total_tokens: int = Field(ge=0)

    model_config = {"frozen": True}

    @classmethod
    def from_tokens(cls, tokens: TokenUsage, duration_ms: float) -> "UsageStats":
        return cls(
            duration_ms=max(duration_ms, 0.0),
            prompt_tokens=tokens.prompt_tokens,
            completion_tokens=tokens.completion_tokens,
            total_tokens=tokens.total_tokens,
        )


class BaseStreamEvent(BaseModel):
    """Base class for everything the gateway emits on a chat stream."""
    type: str
    terminal: ClassVar[bool] = False

    model_config = {"frozen": True}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type}


class ConversationStartedEvent(BaseStreamEvent):
    """First event of a stream whose conversation was created by the gateway."""
    type: Literal["conversationId"] = "conversationId"
    conversation_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "conversationId": self.conversation_id}


class ChunkEvent(BaseStreamEvent):
    """One incremental fragment of the agent's answer."""
    type: Literal["chunk"] = "chunk"
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.text}


class UsageEvent(BaseStreamEvent):
    type: Literal["usage"] = "usage"
    stats: UsageStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "duration": self.stats.duration_ms,
            "promptTokens": self.stats.prompt_tokens,
            "completionTokens": self.stats.completion_tokens,
            "totalTokens": self.stats.total_tokens,
        }


class ErrorEvent(BaseStreamEvent):
    """Terminal failure event. Never followed by ``DoneEvent``."""
    type: Literal["error"] = "error"
    message: str
    terminal: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


class DoneEvent(BaseStreamEvent):
    type: Literal["done"] = "done"
    terminal: ClassVar[bool] = True


StreamEvent = Union[
    ConversationStartedEvent,
    ChunkEvent,
    UsageEvent,
    ErrorEvent,
    DoneEvent,
]
