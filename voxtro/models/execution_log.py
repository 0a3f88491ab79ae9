import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from voxtro.database import Base, JSONType, utcnow


class ActionExecutionLog(Base):
    __tablename__ = "action_execution_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action_id = Column(Uuid, ForeignKey("bot_actions.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"))
    status = Column(Text, nullable=False, default="pending")  # pending, success, failed
    input_data = Column(JSONType, nullable=False, default=dict)
    output_data = Column(JSONType)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True))
