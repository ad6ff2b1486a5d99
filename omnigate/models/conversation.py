import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from omnigate.database import Base, utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("bot_id", "channel_type", "external_thread_id", name="uq_conversations_thread"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(Uuid, ForeignKey("bots.id"), nullable=False)
    channel_type = Column(Text, nullable=False)  # telegram, whatsapp, web
    external_thread_id = Column(Text, nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id"))
    status = Column(Text, nullable=False, default="bot")  # bot, human
    unread_count = Column(Integer, nullable=False, default=0)
    unanswered_count = Column(Integer, nullable=False, default=0)
    message_count = Column(Integer, nullable=False, default=0)
    last_user_at = Column(DateTime(timezone=True))
    last_agent_reply_at = Column(DateTime(timezone=True))
    last_message_at = Column(DateTime(timezone=True))
    agent_read_at = Column(DateTime(timezone=True))
    handoff_at = Column(DateTime(timezone=True))
    handoff_reason = Column(Text)
    handoff_reverted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    bot = relationship("Bot")
    contact = relationship("Contact")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
