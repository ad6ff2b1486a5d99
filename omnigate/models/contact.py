import uuid

from sqlalchemy import Column, DateTime, Integer, Text, UniqueConstraint, Uuid

from omnigate.database import Base, JSONData, utcnow


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("workspace_id", "channel_type", "external_id", name="uq_contacts_identity"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, nullable=False)
    channel_type = Column(Text, nullable=False)
    external_id = Column(Text, nullable=False)
    name = Column(Text)
    phone = Column(Text)
    contact_metadata = Column("metadata", JSONData, nullable=False, default=dict)
    total_conversations = Column(Integer, nullable=False, default=0)
    last_seen_at = Column(DateTime(timezone=True))
    last_conversation_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
