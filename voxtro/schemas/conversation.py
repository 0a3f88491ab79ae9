from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class EndConversationRequest(BaseModel):
    bot_id: UUID
    visitor_id: str


class EndConversationResponse(BaseModel):
    success: bool
    conversation_id: Optional[UUID] = None
    message: str


class SweepResponse(BaseModel):
    processed: int
    total_checked: int
    ended: List[UUID]


class ConversationParametersResponse(BaseModel):
    conversation_id: UUID
    parameters: Dict[str, str]
