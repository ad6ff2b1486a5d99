"""Delivery-status lattice: failed < sent < delivered < read."""

from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from omnigate.logging_config import get_logger
from omnigate.models import Message

logger = get_logger("delivery_service")

STATUS_RANK = {
    "failed": 0,
    "sent": 1,
    "delivered": 2,
    "read": 3,
}


@dataclass
class DeliveryUpgrade:
    message_id: UUID
    conversation_id: UUID
    status: str


def _current_rank():
    return case(STATUS_RANK, value=Message.status, else_=-1)


def upgrade_delivery_status(db: Session, provider_message_id: str, new_status: str) -> Optional[DeliveryUpgrade]:
    """Move a message forward in the lattice. Equal or lower ranks are a no-op."""
    new_rank = STATUS_RANK.get(new_status)
    if new_rank is None or not provider_message_id:
        logger.warning(f"Ignoring delivery status {new_status!r} for {provider_message_id!r}")
        return None

    row = db.execute(
        update(Message)
        .where(Message.provider_message_id == provider_message_id, _current_rank() < new_rank)
        .values(status=new_status)
        .returning(Message.id, Message.conversation_id)
        .execution_options(synchronize_session=False)
    ).first()
    if row is None:
        return None
    return DeliveryUpgrade(message_id=row.id, conversation_id=row.conversation_id, status=new_status)


def apply_status_updates(db: Session, updates: Iterable) -> list[DeliveryUpgrade]:
    """Apply provider receipts; unknown ids are logged and skipped."""
    applied = []
    for status_update in updates:
        upgrade = upgrade_delivery_status(db, status_update.provider_message_id, status_update.status)
        if upgrade:
            applied.append(upgrade)
            continue

        known = db.query(Message.id).filter(Message.provider_message_id == status_update.provider_message_id).first()
        if known is None:
            logger.info(
                "Delivery status for unknown provider message",
                extra={
                    "context": {
                        "provider_message_id": status_update.provider_message_id,
                        "status": status_update.status,
                    }
                },
            )
        else:
            logger.debug(f"Delivery status {status_update.status} is not an upgrade for {known.id}")
    return applied


def record_send_result(db: Session, message_id: UUID, result) -> Optional[str]:
    """Persist the dispatcher outcome on the outbound message row."""
    new_status = "sent" if result.success else "failed"
    values = {
        "status": case((_current_rank() < STATUS_RANK[new_status], new_status), else_=Message.status),
    }
    if result.provider_message_id:
        values["provider_message_id"] = result.provider_message_id

    row = db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(**values)
        .returning(Message.status)
        .execution_options(synchronize_session=False)
    ).first()
    return row.status if row else None
