from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class PreviewConfig(BaseModel):
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ChatRequest(BaseModel):
    bot_id: UUID
    messages: List[ChatMessage] = Field(min_length=1)
    visitor_id: Optional[str] = None
    conversation_id: Optional[UUID] = None
    preview: bool = False
    preview_config: Optional[PreviewConfig] = None

    @model_validator(mode="after")
    def require_user_message(self) -> "ChatRequest":
        if not any(message.role == "user" for message in self.messages):
            raise ValueError("messages must contain at least one user message")
        return self

    @property
    def user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""


class ChatResponse(BaseModel):
    response: str
    conversation_id: Optional[UUID] = None
    form_data: Optional[Dict[str, Any]] = None
    action_result: Optional[Dict[str, Any]] = None
    cached: bool = False
    error_reason: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    reason: str
    conversation_id: Optional[UUID] = None
