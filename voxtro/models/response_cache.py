import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from voxtro.database import Base, utcnow


class ResponseCacheEntry(Base):
    __tablename__ = "response_cache"
    __table_args__ = (Index("ix_response_cache_lookup", "bot_id", "model_used", "question_hash"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    model_used = Column(Text, nullable=False)
    question_hash = Column(Text, nullable=False)
    question_text = Column(Text, nullable=False)
    response_text = Column(Text, nullable=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    hit_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
