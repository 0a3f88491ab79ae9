import uuid

from sqlalchemy import Column, DateTime, Integer, Text, Uuid

from voxtro.database import Base, JSONType, utcnow


class OutboxTask(Base):
    __tablename__ = "outbox_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(Text, nullable=False)  # execute_action, tool_webhook, send_email, extract_parameters
    payload_json = Column(JSONType, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, SENT, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
