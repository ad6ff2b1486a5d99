import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from omnigate.database import Base, JSONData, utcnow


class Bot(Base):
    __tablename__ = "bots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    automation_config = Column(JSONData, nullable=False, default=dict)  # webhook_base_url, ...
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    channels = relationship("Channel", back_populates="bot")
