import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid

from voxtro.database import Base, JSONType, utcnow


class CustomParameter(Base):
    __tablename__ = "custom_parameters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    parameter_name = Column(Text, nullable=False)
    # text, name, phone, condition, qualified, email, number
    parameter_type = Column(Text, nullable=False, default="text")
    is_required = Column(Boolean, nullable=False, default=False)
    extraction_rules = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
