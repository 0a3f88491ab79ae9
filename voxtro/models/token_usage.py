import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Text, Uuid

from voxtro.database import Base, utcnow


class TokenUsage(Base):
    __tablename__ = "token_usage"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"))
    model_used = Column(Text, nullable=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)
    cache_hit = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
