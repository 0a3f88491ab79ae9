from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from voxtro.database import get_db
from voxtro.logging_config import get_logger
from voxtro.schemas.chat import ChatRequest, ChatResponse, ErrorResponse
from voxtro.services.chat_service import LIMIT_MESSAGES, get_active_bot, process_chat, run_preview
from voxtro.services.errors import LimitExceeded

logger = get_logger("chat_router")

router = APIRouter(tags=["chat"])


def _error(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def chat(request: ChatRequest, db: Session = Depends(get_db)):
    """Answer one chat message for a bot."""
    bot = get_active_bot(db, request.bot_id)
    if not bot:
        return _error(404, ErrorResponse(error="Chatbot not found", reason="bot_not_found"))

    if request.preview:
        return run_preview(db, bot, request)

    try:
        return process_chat(db, bot, request)
    except LimitExceeded as exc:
        db.rollback()
        logger.info("Chat throttled", extra={"context": {"bot_id": str(bot.id), "reason": exc.reason}})
        return _error(
            429,
            ErrorResponse(error=LIMIT_MESSAGES[exc.scope], reason=exc.reason, conversation_id=exc.conversation_id),
        )
