import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from omnigate.database import Base, JSONData, utcnow


class Channel(Base):
    __tablename__ = "bot_channels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False, index=True)
    channel_type = Column(Text, nullable=False)  # telegram, whatsapp
    public_id = Column(Text, nullable=False, unique=True)
    secret = Column(Text)
    config = Column(JSONData, nullable=False, default=dict)  # provider credentials
    is_enabled = Column(Boolean, nullable=False, default=True)
    status = Column(Text, nullable=False, default="pending")  # pending, connected, error
    status_message = Column(Text)
    last_activity_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    bot = relationship("Bot", back_populates="channels")
