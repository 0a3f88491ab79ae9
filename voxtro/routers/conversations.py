from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from voxtro.database import get_db
from voxtro.models import ActionExecutionLog, Conversation, CustomParameter
from voxtro.schemas.actions import ExecutionLogOut
from voxtro.schemas.conversation import (
    ConversationParametersResponse,
    EndConversationRequest,
    EndConversationResponse,
    SweepResponse,
)
from voxtro.schemas.extraction import ExtractRequest, ExtractResponse
from voxtro.services.conversation_end_service import force_end, sweep_conversations
from voxtro.services.extraction_service import extract_parameters, get_conversation_parameters

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _get_conversation(db: Session, conversation_id: UUID) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("/end", response_model=EndConversationResponse)
def end_conversation(request: EndConversationRequest, db: Session = Depends(get_db)):
    conversation = force_end(db, request.bot_id, request.visitor_id)
    if conversation is None:
        return EndConversationResponse(success=True, message="No active conversation")
    return EndConversationResponse(success=True, conversation_id=conversation.id, message="Conversation force ended")


@router.post("/sweep", response_model=SweepResponse)
def sweep(db: Session = Depends(get_db)):
    """Run one end-of-conversation sweep now."""
    return SweepResponse(**sweep_conversations(db))


@router.get("/{conversation_id}/executions", response_model=List[ExecutionLogOut])
def list_executions(conversation_id: UUID, db: Session = Depends(get_db)):
    _get_conversation(db, conversation_id)
    return (
        db.query(ActionExecutionLog)
        .filter(ActionExecutionLog.conversation_id == conversation_id)
        .order_by(ActionExecutionLog.created_at.desc())
        .all()
    )


@router.post("/{conversation_id}/parameters/extract", response_model=ExtractResponse)
def extract(conversation_id: UUID, request: ExtractRequest, db: Session = Depends(get_db)):
    conversation = _get_conversation(db, conversation_id)
    result = extract_parameters(db, conversation, request.messages, force=request.force)
    if not result.ok:
        db.rollback()
        raise HTTPException(status_code=500, detail=result.error)
    db.commit()
    total = db.query(CustomParameter).filter(CustomParameter.bot_id == conversation.bot_id).count()
    return ExtractResponse(conversation_id=str(conversation.id), extracted=result.value, total_parameters=total)


@router.get("/{conversation_id}/parameters", response_model=ConversationParametersResponse)
def list_parameters(conversation_id: UUID, db: Session = Depends(get_db)):
    _get_conversation(db, conversation_id)
    return ConversationParametersResponse(
        conversation_id=conversation_id,
        parameters=get_conversation_parameters(db, conversation_id),
    )
