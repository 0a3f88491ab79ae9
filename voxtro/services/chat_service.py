"""Per-message chat pipeline.

Order of a live turn: budget check, conversation resolution, cache, FAQ,
form trigger, model call, action detection (or forced inference), token
accounting, persistence. Preview turns only run the model and detection.
"""

import json
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from voxtro.config import settings
from voxtro.logging_config import get_logger
from voxtro.models import ActionExecutionLog, Bot, BotAction, Conversation
from voxtro.schemas.chat import ChatRequest, ChatResponse, PreviewConfig
from voxtro.services import budget_service, cache_service
from voxtro.services.action_detector import detect_action_call, strip_action_call
from voxtro.services.action_executor import dispatch_action, prepare_tool_input
from voxtro.services.alert_service import alert_error
from voxtro.services.completion_service import complete
from voxtro.services.conversation_service import (
    find_active_conversation,
    get_conversation_history,
    get_or_create_conversation,
    queue_chat_started,
    save_message,
)
from voxtro.services.errors import LimitExceeded
from voxtro.services.extraction_service import extract_parameters, get_conversation_parameters
from voxtro.services.inference_service import fallback_contact_scan, find_forced_action
from voxtro.services.matcher_service import FORM_INTRO, form_payload, match_faq, match_form
from voxtro.services.prompt_service import build_system_prompt

logger = get_logger("chat_service")

APOLOGY = "I'm sorry, I'm having trouble responding right now. Please try again in a moment."
LIMIT_MESSAGES = {
    "daily": "Daily token limit reached. Please try again tomorrow.",
    "monthly": "Monthly token limit reached. Please upgrade your plan.",
}


def get_active_bot(db: Session, bot_id: UUID) -> Optional[Bot]:
    return db.query(Bot).filter(Bot.id == bot_id, Bot.is_active.is_(True)).first()


def get_active_actions(db: Session, bot_id: UUID) -> List[BotAction]:
    return (
        db.query(BotAction)
        .filter(BotAction.bot_id == bot_id, BotAction.is_active.is_(True))
        .order_by(BotAction.created_at.asc())
        .all()
    )


def _conversation_text(messages: List[dict]) -> str:
    return "\n".join(m.get("content") or "" for m in messages)


def _already_executed(db: Session, action: BotAction, conversation_id: UUID) -> bool:
    return (
        db.query(ActionExecutionLog.id)
        .filter(ActionExecutionLog.action_id == action.id, ActionExecutionLog.conversation_id == conversation_id)
        .first()
        is not None
    )


def _find_action(actions: List[BotAction], name: str) -> Optional[BotAction]:
    return next((action for action in actions if action.name == name), None)


def run_preview(db: Session, bot: Bot, request: ChatRequest) -> ChatResponse:
    """Answer with overridden prompt settings. Nothing is persisted or dispatched."""
    config = request.preview_config or PreviewConfig()
    actions = get_active_actions(db, bot.id)
    system_prompt = build_system_prompt(
        config.system_prompt if config.system_prompt is not None else bot.system_prompt,
        actions,
        website_content=bot.website_content,
    )
    result = complete(
        [{"role": "system", "content": system_prompt}] + [m.model_dump() for m in request.messages],
        model=config.model or bot.model or settings.default_model,
        temperature=config.temperature if config.temperature is not None else (bot.temperature or 0.7),
        max_tokens=config.max_tokens or bot.max_tokens or 1000,
    )
    if not result.ok:
        return ChatResponse(response=APOLOGY, conversation_id=request.conversation_id, error_reason="upstream_error")

    text = result.value.content
    action_result = None
    call = detect_action_call(text, [action.name for action in actions])
    if call:
        action = _find_action(actions, call.name)
        if action:
            text = strip_action_call(text, call, action.action_type)
            action_result = {"success": True, "message": "Action detected (preview)", "action": call.name}
    return ChatResponse(response=text, conversation_id=request.conversation_id, action_result=action_result)


def _dispatch(
    db: Session, action: BotAction, parameters: dict, conversation: Conversation, conversation_text: str, source: str
) -> dict:
    input_data = prepare_tool_input(action, parameters, conversation_text)
    log = dispatch_action(db, action, input_data, conversation.id)
    logger.info(
        "Action queued from chat",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "action_name": action.name,
                "execution_id": str(log.id),
                "source": source,
            }
        },
    )
    return {
        "success": True,
        "message": "Action queued",
        "action": action.name,
        "execution_id": str(log.id),
        "forced": source == "inference",
    }


def _forced_action(
    db: Session, actions: List[BotAction], conversation: Conversation, full_messages: List[dict]
) -> Optional[dict]:
    action = find_forced_action(
        actions, full_messages, skip=lambda candidate: _already_executed(db, candidate, conversation.id)
    )
    if action is None:
        return None

    extract_parameters(db, conversation, full_messages)
    parameters = get_conversation_parameters(db, conversation.id)
    text = _conversation_text(full_messages)
    if not parameters:
        parameters = fallback_contact_scan(
            _conversation_text([m for m in full_messages if m.get("role") == "user"])
        )
    return _dispatch(db, action, parameters, conversation, text, "inference")


def process_chat(db: Session, bot: Bot, request: ChatRequest) -> ChatResponse:
    """Run one live chat turn and commit it. Raises LimitExceeded before anything is written."""
    user_text = request.user_message

    try:
        budget_service.admit(db, bot)
    except LimitExceeded as exc:
        existing = find_active_conversation(db, bot.id, request.visitor_id) if request.visitor_id else None
        exc.conversation_id = request.conversation_id or (existing.id if existing else None)
        raise

    conversation, created = get_or_create_conversation(db, bot.id, request.visitor_id, request.conversation_id)
    if created:
        queue_chat_started(db, bot, conversation)
    history = get_conversation_history(db, conversation.id, limit=settings.history_limit)
    save_message(db, conversation.id, "user", user_text)
    model = bot.model or settings.default_model

    if bot.cache_enabled and not history:
        entry = cache_service.lookup(db, bot.id, model, cache_service.question_hash(user_text))
        if entry:
            budget_service.record_usage(
                db,
                bot_id=bot.id,
                conversation_id=conversation.id,
                model=model,
                input_tokens=entry.input_tokens or 0,
                output_tokens=entry.output_tokens or 0,
                cache_hit=True,
            )
            save_message(db, conversation.id, "assistant", entry.response_text)
            db.commit()
            return ChatResponse(response=entry.response_text, conversation_id=conversation.id, cached=True)

    faq = match_faq(db, bot.id, user_text)
    if faq:
        save_message(db, conversation.id, "assistant", faq.answer)
        db.commit()
        logger.info("FAQ matched", extra={"context": {"conversation_id": str(conversation.id), "faq_id": str(faq.id)}})
        return ChatResponse(response=faq.answer, conversation_id=conversation.id)

    form = match_form(db, bot.id, user_text)
    if form:
        save_message(db, conversation.id, "assistant", FORM_INTRO)
        db.commit()
        logger.info("Form triggered", extra={"context": {"conversation_id": str(conversation.id), "form_id": str(form.id)}})
        return ChatResponse(response=FORM_INTRO, conversation_id=conversation.id, form_data=form_payload(form))

    actions = get_active_actions(db, bot.id)
    system_prompt = build_system_prompt(bot.system_prompt, actions, website_content=bot.website_content)
    if history:
        turn_messages = history + [{"role": "user", "content": user_text}]
    else:
        turn_messages = [m.model_dump() for m in request.messages if m.role != "system"]
    prompt_messages = [{"role": "system", "content": system_prompt}] + turn_messages

    result = complete(
        prompt_messages,
        model=model,
        temperature=bot.temperature if bot.temperature is not None else 0.7,
        max_tokens=bot.max_tokens or 1000,
    )
    if not result.ok:
        db.commit()
        alert_error(
            "Language model call failed",
            {"bot_id": str(bot.id), "conversation_id": str(conversation.id), "error": result.error},
        )
        return ChatResponse(response=APOLOGY, conversation_id=conversation.id, error_reason="upstream_error")

    llm_response = result.value
    raw_text = llm_response.content or ""
    visible_text = raw_text
    action_result = None

    call = detect_action_call(raw_text, [action.name for action in actions])
    full_messages = turn_messages
    if call:
        action = _find_action(actions, call.name)
        if action:
            visible_text = strip_action_call(raw_text, call, action.action_type)
            action_result = _dispatch(
                db, action, call.parameters, conversation, _conversation_text(full_messages), "detected"
            )
        else:
            logger.warning(
                "Model called an unknown action",
                extra={"context": {"conversation_id": str(conversation.id), "action_name": call.name}},
            )
    elif actions:
        action_result = _forced_action(db, actions, conversation, full_messages)

    input_tokens = llm_response.prompt_tokens or budget_service.estimate_tokens(json.dumps(prompt_messages))
    output_tokens = llm_response.completion_tokens or budget_service.estimate_tokens(raw_text)
    budget_service.record_usage(
        db,
        bot_id=bot.id,
        conversation_id=conversation.id,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )

    if visible_text.strip():
        save_message(db, conversation.id, "assistant", visible_text)
        if bot.cache_enabled and action_result is None:
            cache_service.store(
                db,
                bot_id=bot.id,
                model=model,
                question=user_text,
                response=visible_text,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                ttl_hours=bot.cache_duration_hours or settings.default_cache_hours,
                history_empty=not history,
            )

    db.commit()
    return ChatResponse(response=visible_text, conversation_id=conversation.id, action_result=action_result)
