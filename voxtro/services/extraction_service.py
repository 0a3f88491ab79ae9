from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import Conversation, ConversationParameter, CustomParameter
from voxtro.schemas.extraction import ExtractionRules
from voxtro.services.conversation_service import get_all_messages
from voxtro.services.extraction_strategies import ExtractionContext, select_strategy
from voxtro.services.result import Result

logger = get_logger("extraction_service")


def _parse_rules(parameter: CustomParameter) -> Optional[ExtractionRules]:
    try:
        return ExtractionRules.model_validate(parameter.extraction_rules or {})
    except PydanticValidationError as exc:
        logger.warning(
            "Skipping parameter with malformed extraction rules",
            extra={"context": {"parameter": parameter.parameter_name, "error": str(exc)}},
        )
        return None


def build_context(parameters: List[CustomParameter], messages: List[dict]) -> ExtractionContext:
    rules_by_name = {}
    for parameter in parameters:
        rules = _parse_rules(parameter)
        if rules is not None:
            rules_by_name[parameter.parameter_name] = (parameter.parameter_type or "text", rules)
    return ExtractionContext(messages=messages, parameters=rules_by_name)


def upsert_parameter(db: Session, conversation_id: UUID, name: str, value: str, *, force: bool = False) -> bool:
    """Store one extracted value. Returns True when a row was written."""
    existing = (
        db.query(ConversationParameter)
        .filter(ConversationParameter.conversation_id == conversation_id, ConversationParameter.parameter_name == name)
        .first()
    )
    if existing:
        if not force or existing.parameter_value == value:
            return False
        existing.parameter_value = value
        existing.extracted_at = utcnow()
    else:
        db.add(ConversationParameter(conversation_id=conversation_id, parameter_name=name, parameter_value=value))
    db.flush()
    return True


def get_conversation_parameters(db: Session, conversation_id: UUID) -> dict[str, str]:
    rows = db.query(ConversationParameter).filter(ConversationParameter.conversation_id == conversation_id).all()
    return {row.parameter_name: row.parameter_value for row in rows}


def extract_parameters(
    db: Session,
    conversation: Conversation,
    messages: Optional[List[dict]] = None,
    *,
    force: bool = False,
) -> Result[dict]:
    """Run every configured parameter over the conversation and upsert what was found.

    `messages` defaults to the stored conversation history.
    """
    try:
        parameters = db.query(CustomParameter).filter(CustomParameter.bot_id == conversation.bot_id).all()
        if not parameters:
            return Result.success({})

        if messages is None:
            messages = [{"role": m.role, "content": m.content} for m in get_all_messages(db, conversation.id)]

        ctx = build_context(parameters, messages)
        extracted: dict[str, str] = {}
        for name, (parameter_type, rules) in ctx.parameters.items():
            value = select_strategy(parameter_type, name).extract(ctx, rules, name)
            if not value:
                continue
            extracted[name] = value
            upsert_parameter(db, conversation.id, name, value, force=force)

        logger.info(
            "Parameters extracted",
            extra={
                "context": {
                    "conversation_id": str(conversation.id),
                    "extracted": sorted(extracted),
                    "total": len(parameters),
                    "force": force,
                }
            },
        )
        return Result.success(extracted)
    except SQLAlchemyError as exc:
        logger.error(
            "Parameter extraction failed",
            extra={"context": {"conversation_id": str(conversation.id), "error": str(exc)}},
        )
        return Result.failure(str(exc), "db_error")
