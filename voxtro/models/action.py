import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from voxtro.database import Base, JSONType, utcnow


class BotAction(Base):
    __tablename__ = "bot_actions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    # calendar_booking, email_send, webhook_call, zapier_trigger, custom_tool
    action_type = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    configuration = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    bot = relationship("Bot", back_populates="actions")
