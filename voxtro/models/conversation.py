import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from voxtro.database import Base, utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    visitor_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="active")  # active, ended
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = Column(DateTime(timezone=True))

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
