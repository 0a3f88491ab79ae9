import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid

from voxtro.database import Base, JSONType, utcnow


class BotForm(Base):
    __tablename__ = "bot_forms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    form_title = Column(Text, nullable=False)
    form_description = Column(Text)
    fields = Column(JSONType, nullable=False, default=list)
    trigger_keywords = Column(JSONType, nullable=False, default=list)
    success_message = Column(Text)
    terms_and_conditions = Column(Text)
    require_terms_acceptance = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
