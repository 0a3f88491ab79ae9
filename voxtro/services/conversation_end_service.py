"""End-of-conversation handling.

The sweep ends idle conversations and, for bots that asked for it, queues a
notification email when the bot's condition set holds. Ended conversations
are never picked up again, which makes repeated sweeps safe.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from voxtro.config import settings
from voxtro.database import ensure_timezone, utcnow
from voxtro.logging_config import get_logger
from voxtro.models import ActionExecutionLog, Bot, BotAction, Conversation, Message
from voxtro.services.condition_service import evaluate
from voxtro.services.conversation_service import end_conversation, find_active_conversation, get_all_messages
from voxtro.services.extraction_service import extract_parameters, get_conversation_parameters
from voxtro.services.outbox_service import enqueue_task
from voxtro.services.state_machine import ConversationStatus
from voxtro.services.template_service import build_notification_variables, render_notification

logger = get_logger("conversation_end_service")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def _format_ts(value: datetime) -> str:
    return ensure_timezone(value).strftime(TIMESTAMP_FORMAT)


def get_tool_parameters(db: Session, conversation_id: UUID) -> dict:
    """Inputs of successful custom-tool executions, keys prefixed with tool_."""
    rows = (
        db.query(ActionExecutionLog)
        .join(BotAction, BotAction.id == ActionExecutionLog.action_id)
        .filter(
            ActionExecutionLog.conversation_id == conversation_id,
            ActionExecutionLog.status == "success",
            BotAction.action_type == "custom_tool",
        )
        .order_by(ActionExecutionLog.created_at.asc())
        .all()
    )
    tool_parameters = {}
    for row in rows:
        for key, value in (row.input_data or {}).items():
            tool_parameters[f"tool_{key}"] = value
    return tool_parameters


def build_summary(messages: List[Message]) -> str:
    if not messages:
        return "No conversation content available."
    return (
        f"Conversation with {len(messages)} messages. "
        f"Started: {_format_ts(messages[0].created_at)}. "
        f"Ended: {_format_ts(messages[-1].created_at)}."
    )


def build_evaluation_data(db: Session, bot: Bot, conversation: Conversation, messages: List[Message]) -> dict:
    duration = 0.0
    if messages:
        span = ensure_timezone(messages[-1].created_at) - ensure_timezone(messages[0].created_at)
        duration = round(span.total_seconds() / 60, 2)
    return {
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "message_count": len(messages),
        "duration_minutes": duration,
        "user_rating": 0,
        "summary_sentiment": "neutral",
        "bot_name": bot.name,
        "custom_parameters": get_conversation_parameters(db, conversation.id),
        "tool_parameters": get_tool_parameters(db, conversation.id),
    }


def queue_notification(db: Session, bot: Bot, conversation: Conversation) -> bool:
    """Evaluate the bot's conditions and queue the notification email. True when queued."""
    extract_parameters(db, conversation)
    messages = get_all_messages(db, conversation.id)
    data = build_evaluation_data(db, bot, conversation, messages)

    try:
        matched = evaluate(bot.email_conditions, data)
    except PydanticValidationError as exc:
        logger.warning(
            "Malformed notification conditions",
            extra={"context": {"bot_id": str(bot.id), "error": str(exc)}},
        )
        return False
    if not matched:
        logger.info("Notification conditions not met", extra={"context": {"conversation_id": str(conversation.id)}})
        return False

    well_known = {
        "user_name": data["custom_parameters"].get("name") or "Valued Customer",
        "bot_name": bot.name,
        "conversation_summary": build_summary(messages),
        "timestamp": _format_ts(messages[-1].created_at) if messages else _format_ts(utcnow()),
        "first_message": messages[0].content if messages else "",
        "last_message": messages[-1].content if messages else "",
        "timeout_minutes": bot.session_timeout_minutes or settings.default_session_timeout_minutes,
    }
    variables = build_notification_variables(well_known, data["custom_parameters"], data["tool_parameters"])
    task = enqueue_task(
        db,
        "send_email",
        {
            "to": [bot.end_chat_notification_email],
            "subject": f"Chat session ended - {bot.name}",
            "html": render_notification(bot.email_template, variables),
        },
    )
    logger.info(
        "Notification queued",
        extra={"context": {"conversation_id": str(conversation.id), "task_id": str(task.id)}},
    )
    return True


def sweep_conversations(db: Session, now: Optional[datetime] = None) -> dict:
    """End every active conversation idle past its bot's timeout."""
    now = now or utcnow()
    candidates = []
    rows = (
        db.query(Conversation, Bot)
        .join(Bot, Bot.id == Conversation.bot_id)
        .filter(Conversation.status == ConversationStatus.ACTIVE.value)
        .order_by(Conversation.created_at.asc())
        .all()
    )
    for conversation, bot in rows:
        last_at = (
            db.query(Message.created_at)
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc())
            .limit(1)
            .scalar()
        )
        if last_at is not None:
            candidates.append((conversation, bot, last_at))

    processed = 0
    ended: List[UUID] = []
    for conversation, bot, last_at in candidates:
        timeout = bot.session_timeout_minutes or settings.default_session_timeout_minutes
        if now - ensure_timezone(last_at) < timedelta(minutes=timeout):
            continue

        end_conversation(db, conversation)
        ended.append(conversation.id)
        if bot.end_chat_notification_enabled and bot.end_chat_notification_email:
            if queue_notification(db, bot, conversation):
                processed += 1
        db.commit()

    logger.info(
        "Conversation sweep finished",
        extra={"context": {"checked": len(candidates), "ended": len(ended), "notified": processed}},
    )
    return {"processed": processed, "total_checked": len(candidates), "ended": ended}


def force_end(db: Session, bot_id: UUID, visitor_id: str) -> Optional[Conversation]:
    """End the visitor's active conversation, if any. No notification is sent."""
    conversation = find_active_conversation(db, bot_id, visitor_id)
    if conversation is None:
        return None
    end_conversation(db, conversation)
    db.commit()
    logger.info("Conversation force ended", extra={"context": {"conversation_id": str(conversation.id)}})
    return conversation
