import html
import time
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import Bot, Conversation, Message
from voxtro.services.outbox_service import enqueue_task
from voxtro.services.state_machine import ConversationStatus, end

logger = get_logger("conversation_service")


def find_active_conversation(db: Session, bot_id: UUID, visitor_id: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.bot_id == bot_id,
            Conversation.visitor_id == visitor_id,
            Conversation.status == ConversationStatus.ACTIVE.value,
        )
        .order_by(Conversation.created_at.desc())
        .first()
    )


def get_or_create_conversation(
    db: Session,
    bot_id: UUID,
    visitor_id: Optional[str],
    conversation_id: Optional[UUID] = None,
) -> Tuple[Conversation, bool]:
    """Explicit id first, then the visitor's active conversation, then a new one.

    Returns the conversation and whether it was created by this call.
    """
    if conversation_id:
        conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
        if conversation and conversation.bot_id == bot_id and conversation.status == ConversationStatus.ACTIVE.value:
            return conversation, False

    visitor_id = visitor_id or f"anon_{int(time.time() * 1000)}"
    conversation = find_active_conversation(db, bot_id, visitor_id)
    if conversation:
        return conversation, False

    conversation = Conversation(
        bot_id=bot_id,
        visitor_id=visitor_id,
        status=ConversationStatus.ACTIVE.value,
        created_at=utcnow(),
    )
    db.add(conversation)
    db.flush()
    return conversation, True


def queue_chat_started(db: Session, bot: Bot, conversation: Conversation) -> bool:
    """Queue the owner's new-conversation email when the bot has it switched on."""
    if not (bot.start_chat_notification_enabled and bot.end_chat_notification_email):
        return False
    enqueue_task(
        db,
        "send_email",
        {
            "to": [bot.end_chat_notification_email],
            "subject": f"New conversation started with {bot.name}",
            "html": (
                "<h2>New Conversation Started</h2>"
                f"<p>A visitor has just started a new conversation with <strong>{html.escape(bot.name)}</strong>.</p>"
                f"<p>Conversation ID: {conversation.id}</p>"
            ),
        },
    )
    logger.info("Chat started notification queued", extra={"context": {"conversation_id": str(conversation.id)}})
    return True


def save_message(db: Session, conversation_id: UUID, role: str, content: str) -> Message:
    """Append a message to the conversation."""
    message = Message(conversation_id=conversation_id, role=role, content=content, created_at=utcnow())
    db.add(message)
    db.flush()
    return message


def get_conversation_history(db: Session, conversation_id: UUID, limit: int = 20) -> List[dict]:
    """Most recent messages in chronological order, system rows skipped."""
    messages = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )

    history = []
    for msg in reversed(messages):
        if msg.role == "system":
            continue
        history.append({"role": msg.role, "content": msg.content})
    return history


def get_all_messages(db: Session, conversation_id: UUID) -> List[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc())
        .all()
    )


def end_conversation(db: Session, conversation: Conversation) -> Conversation:
    """Move an active conversation to ended. Raises InvalidTransitionError otherwise."""
    conversation.status = end(ConversationStatus(conversation.status)).value
    conversation.ended_at = utcnow()
    db.flush()
    return conversation
