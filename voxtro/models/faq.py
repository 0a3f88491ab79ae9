import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid

from voxtro.database import Base, utcnow


class BotFAQ(Base):
    __tablename__ = "bot_faqs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
