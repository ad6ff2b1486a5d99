import uuid

from sqlalchemy import Column, DateTime, Integer, Text, Uuid

from omnigate.database import Base, JSONData, utcnow


class ForwardOutbox(Base):
    __tablename__ = "automation_outbox"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, nullable=False, index=True)
    channel_id = Column(Uuid, nullable=False)
    channel_type = Column(Text, nullable=False)
    target_url = Column(Text)
    payload_json = Column(JSONData, nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, SENT, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
