import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from omnigate.database import Base, JSONData, utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    role = Column(Text, nullable=False)  # user, assistant, agent, system
    content = Column(Text, nullable=False)
    raw = Column(JSONData)
    provider_message_id = Column(Text, index=True)
    status = Column(Text)  # sent, delivered, read, failed
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
