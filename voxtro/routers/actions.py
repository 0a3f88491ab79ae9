from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from voxtro.database import get_db
from voxtro.models import BotAction
from voxtro.schemas.actions import ExecuteActionRequest, ExecuteActionResponse
from voxtro.services.action_executor import dispatch_action

router = APIRouter(prefix="/actions", tags=["actions"])


@router.post("/{action_id}/execute", response_model=ExecuteActionResponse)
def execute_action(action_id: UUID, request: ExecuteActionRequest, db: Session = Depends(get_db)):
    """Queue an action run. Poll the conversation's executions for the outcome."""
    if request.input_data is None:
        raise HTTPException(status_code=400, detail="Missing input_data")

    action = db.query(BotAction).filter(BotAction.id == action_id, BotAction.is_active.is_(True)).first()
    if not action:
        raise HTTPException(status_code=404, detail="Action not found or inactive")

    log = dispatch_action(db, action, request.input_data, request.conversation_id)
    db.commit()
    return ExecuteActionResponse(success=True, execution_id=log.id, status=log.status)
