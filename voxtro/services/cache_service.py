import re
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import ResponseCacheEntry

logger = get_logger("cache_service")


def normalize_question(question: str) -> str:
    return re.sub(r"\s+", " ", (question or "").lower().strip())


def question_hash(question: str) -> str:
    """Cheap 32-bit rolling hash of the normalized question.

    Not collision resistant; lookups also filter on bot and model.
    """
    value = 0
    for char in normalize_question(question):
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return str(value)


def purge_expired(db: Session, bot_id: Optional[UUID] = None) -> int:
    query = db.query(ResponseCacheEntry).filter(ResponseCacheEntry.expires_at < utcnow())
    if bot_id is not None:
        query = query.filter(ResponseCacheEntry.bot_id == bot_id)
    removed = query.delete(synchronize_session=False)
    if removed:
        logger.info("Expired cache entries purged", extra={"context": {"removed": removed}})
    return removed


def lookup(db: Session, bot_id: UUID, model: str, qhash: str) -> Optional[ResponseCacheEntry]:
    """Return a live entry and count the hit, or None."""
    purge_expired(db, bot_id)
    entry = (
        db.query(ResponseCacheEntry)
        .filter(
            ResponseCacheEntry.bot_id == bot_id,
            ResponseCacheEntry.model_used == model,
            ResponseCacheEntry.question_hash == qhash,
            ResponseCacheEntry.expires_at > utcnow(),
        )
        .order_by(ResponseCacheEntry.created_at.desc())
        .first()
    )
    if not entry:
        return None

    entry.hit_count = (entry.hit_count or 0) + 1
    db.flush()
    logger.info(
        "Cache hit",
        extra={"context": {"bot_id": str(bot_id), "model": model, "hit_count": entry.hit_count}},
    )
    return entry


def store(
    db: Session,
    *,
    bot_id: UUID,
    model: str,
    question: str,
    response: str,
    input_tokens: int,
    output_tokens: int,
    ttl_hours: int,
    history_empty: bool = True,
) -> Optional[ResponseCacheEntry]:
    """Cache a first-turn answer. Empty answers and multi-turn context are never stored."""
    if not history_empty or not (response or "").strip():
        return None

    now = utcnow()
    entry = ResponseCacheEntry(
        bot_id=bot_id,
        model_used=model,
        question_hash=question_hash(question),
        question_text=question,
        response_text=response,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        hit_count=0,
        expires_at=now + timedelta(hours=ttl_hours),
        created_at=now,
    )
    db.add(entry)
    db.flush()
    return entry
