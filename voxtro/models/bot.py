import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from voxtro.database import Base, JSONType, utcnow


class Bot(Base):
    __tablename__ = "bots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid)
    name = Column(Text, nullable=False)
    system_prompt = Column(Text)
    model = Column(Text)
    temperature = Column(Float, default=0.7)
    max_tokens = Column(Integer, default=1000)
    website_content = Column(Text)
    cache_enabled = Column(Boolean, nullable=False, default=False)
    cache_duration_hours = Column(Integer)
    daily_token_limit = Column(Integer)
    monthly_token_limit = Column(Integer)
    session_timeout_minutes = Column(Integer)
    start_chat_notification_enabled = Column(Boolean, nullable=False, default=False)
    end_chat_notification_enabled = Column(Boolean, nullable=False, default=False)
    end_chat_notification_email = Column(Text)
    email_conditions = Column(JSONType)  # {logic, groups: [{logic, rules}]}
    email_template = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    actions = relationship("BotAction", back_populates="bot")
