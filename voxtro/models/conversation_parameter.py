import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid

from voxtro.database import Base, utcnow


class ConversationParameter(Base):
    __tablename__ = "conversation_parameters"
    __table_args__ = (UniqueConstraint("conversation_id", "parameter_name", name="uq_conversation_parameter"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    parameter_name = Column(Text, nullable=False)
    parameter_value = Column(Text, nullable=False)
    extracted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
