from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from omnigate.database import utcnow
from omnigate.models import Channel


def find_channel(db: Session, channel_type: str, public_id: str) -> Optional[Channel]:
    return (
        db.query(Channel)
        .filter(
            Channel.public_id == public_id,
            Channel.channel_type == channel_type,
            Channel.is_enabled.is_(True),
        )
        .first()
    )


def mark_channel_status(db: Session, channel_id: UUID, status: str, message: Optional[str] = None) -> None:
    db.execute(
        update(Channel)
        .where(Channel.id == channel_id)
        .values(status=status, status_message=message, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def touch_channel_activity(db: Session, channel_id: UUID, *, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    db.execute(
        update(Channel)
        .where(Channel.id == channel_id)
        .values(last_activity_at=now, status="connected", status_message=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
