import math
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import Bot, TokenUsage
from voxtro.services.errors import LimitExceeded

logger = get_logger("budget_service")

# USD per 1K tokens: (input, output)
MODEL_PRICING = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0015, 0.002),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 4)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
    return (input_tokens / 1000) * input_price + (output_tokens / 1000) * output_price


def _tokens_since(db: Session, bot_id: UUID, since: datetime) -> int:
    total = (
        db.query(func.coalesce(func.sum(TokenUsage.input_tokens + TokenUsage.output_tokens), 0))
        .filter(TokenUsage.bot_id == bot_id, TokenUsage.created_at >= since)
        .scalar()
    )
    return int(total or 0)


def get_usage_totals(db: Session, bot_id: UUID, now: Optional[datetime] = None) -> tuple[int, int]:
    """Tokens used since UTC midnight and since the first of the UTC month."""
    now = (now or utcnow()).astimezone(timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = day_start.replace(day=1)
    return _tokens_since(db, bot_id, day_start), _tokens_since(db, bot_id, month_start)


def admit(db: Session, bot: Bot, now: Optional[datetime] = None) -> None:
    """Raise LimitExceeded when a configured ceiling is already reached."""
    daily_limit = bot.daily_token_limit or 0
    monthly_limit = bot.monthly_token_limit or 0
    if daily_limit <= 0 and monthly_limit <= 0:
        return

    daily_used, monthly_used = get_usage_totals(db, bot.id, now)
    if daily_limit > 0 and daily_used >= daily_limit:
        logger.warning(
            "Daily token limit reached",
            extra={"context": {"bot_id": str(bot.id), "used": daily_used, "limit": daily_limit}},
        )
        raise LimitExceeded("daily", daily_used, daily_limit)
    if monthly_limit > 0 and monthly_used >= monthly_limit:
        logger.warning(
            "Monthly token limit reached",
            extra={"context": {"bot_id": str(bot.id), "used": monthly_used, "limit": monthly_limit}},
        )
        raise LimitExceeded("monthly", monthly_used, monthly_limit)


def record_usage(
    db: Session,
    *,
    bot_id: UUID,
    conversation_id: Optional[UUID],
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_hit: bool = False,
) -> TokenUsage:
    usage = TokenUsage(
        bot_id=bot_id,
        conversation_id=conversation_id,
        model_used=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_cost=calculate_cost(model, input_tokens, output_tokens),
        cache_hit=cache_hit,
        created_at=utcnow(),
    )
    db.add(usage)
    db.flush()
    return usage
