import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from omnigate.database import dialect_name, upsert_insert, utcnow
from omnigate.logging_config import get_logger
from omnigate.models import Contact

logger = get_logger("contact_service")

contacts = Contact.__table__


@dataclass
class ContactResolution:
    contact_id: UUID
    was_created: bool


def derive_contact_fields(channel_type: str, external_id: str, profile: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Return (display name, phone) for the channel's profile shape."""
    name = None
    phone = None

    if channel_type == "whatsapp":
        nested = profile.get("profile") if isinstance(profile.get("profile"), dict) else {}
        name = nested.get("name") or profile.get("name")
        if external_id:
            phone = external_id if external_id.startswith("+") else f"+{external_id}"
    elif channel_type == "telegram":
        parts = [profile.get("first_name"), profile.get("last_name")]
        name = " ".join(p for p in parts if p) or profile.get("username")
    else:
        name = profile.get("name")

    if isinstance(name, str):
        name = name.strip() or None
    return name, phone


def _merge_metadata(db: Session, existing, incoming, profile: dict[str, Any]):
    """Shallow merge: top-level keys of the new profile replace stored ones."""
    if dialect_name(db) != "sqlite":
        return existing.op("||")(incoming)
    if not profile:
        return existing
    # nested objects are replaced whole, same as postgres jsonb ||
    pairs = []
    for key, value in profile.items():
        pairs.extend([f'$."{key}"', func.json(json.dumps(value))])
    return func.json_set(existing, *pairs)


def find_or_create_contact(
    db: Session,
    *,
    workspace_id: UUID,
    channel_type: str,
    external_id: str,
    profile: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> ContactResolution:
    profile = profile or {}
    now = now or utcnow()
    name, phone = derive_contact_fields(channel_type, external_id, profile)
    candidate_id = uuid.uuid4()

    stmt = upsert_insert(db, contacts).values(
        id=candidate_id,
        workspace_id=workspace_id,
        channel_type=channel_type,
        external_id=external_id,
        name=name,
        phone=phone,
        metadata=profile,
        total_conversations=0,
        last_seen_at=now,
        created_at=now,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["workspace_id", "channel_type", "external_id"],
        set_={
            "last_seen_at": now,
            "metadata": _merge_metadata(db, contacts.c["metadata"], excluded["metadata"], profile),
            "name": func.coalesce(func.nullif(excluded["name"], ""), contacts.c.name),
            "phone": func.coalesce(contacts.c.phone, excluded["phone"]),
            "updated_at": now,
        },
    ).returning(contacts.c.id)

    contact_id = db.execute(stmt).scalar_one()
    was_created = contact_id == candidate_id
    if was_created:
        logger.info(
            "Contact created",
            extra={"context": {"contact_id": str(contact_id), "channel_type": channel_type}},
        )
    return ContactResolution(contact_id=contact_id, was_created=was_created)


def link_conversation_to_contact(db: Session, contact_id: UUID, *, now: Optional[datetime] = None) -> None:
    """Count a newly opened thread against the contact."""
    now = now or utcnow()
    db.execute(
        update(contacts)
        .where(contacts.c.id == contact_id)
        .values(
            total_conversations=contacts.c.total_conversations + 1,
            last_conversation_at=now,
            updated_at=now,
        )
    )
