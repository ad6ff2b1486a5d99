"""Handoff gatekeeper: decides bot vs human ownership of a conversation.

Every inbound user message runs `decide_forwarding`, which reads, decides and
writes in one conditional UPDATE so concurrent deliveries for the same thread
serialize on the row instead of racing on the counter.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, or_, update
from sqlalchemy.orm import Session

from omnigate.config import settings
from omnigate.database import utcnow
from omnigate.logging_config import get_logger
from omnigate.models import Conversation
from omnigate.services.conversation_service import get_conversation
from omnigate.services.result import Result
from omnigate.services.state_machine import ConversationStatus, parse_status, transition

logger = get_logger("handoff_service")

BOT = ConversationStatus.BOT.value
HUMAN = ConversationStatus.HUMAN.value


@dataclass
class GateDecision:
    forward: bool
    status: str
    unanswered_count: int
    reason: str  # bot, reverted, suppressed, missing


@dataclass
class StatusChange:
    conversation_id: UUID
    old_status: str
    new_status: str
    changed: bool


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def decide_forwarding(
    db: Session,
    conversation_id: UUID,
    *,
    now: Optional[datetime] = None,
    timeout_seconds: Optional[int] = None,
    max_unanswered: Optional[int] = None,
) -> GateDecision:
    now = now or utcnow()
    if timeout_seconds is None:
        timeout_seconds = settings.handoff_timeout_seconds
    if max_unanswered is None:
        max_unanswered = settings.max_unanswered
    cutoff = now - timedelta(seconds=timeout_seconds)

    is_human = Conversation.status == HUMAN
    should_revert = and_(
        is_human,
        or_(
            Conversation.last_agent_reply_at.is_(None),
            Conversation.last_agent_reply_at < cutoff,
            Conversation.unanswered_count >= max_unanswered,
        ),
    )

    row = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            status=case((should_revert, BOT), else_=Conversation.status),
            unanswered_count=case(
                (should_revert, 0),
                (is_human, Conversation.unanswered_count + 1),
                else_=Conversation.unanswered_count,
            ),
            handoff_reverted_at=case((should_revert, now), else_=Conversation.handoff_reverted_at),
        )
        .returning(Conversation.status, Conversation.unanswered_count, Conversation.handoff_reverted_at)
        .execution_options(synchronize_session=False)
    ).first()

    if row is None:
        return GateDecision(forward=True, status=BOT, unanswered_count=0, reason="missing")

    if row.status == HUMAN:
        logger.info(
            "Forward suppressed, conversation owned by human",
            extra={"context": {"conversation_id": str(conversation_id), "unanswered_count": row.unanswered_count}},
        )
        return GateDecision(forward=False, status=HUMAN, unanswered_count=row.unanswered_count, reason="suppressed")

    if _as_naive_utc(row.handoff_reverted_at) == _as_naive_utc(now):
        logger.info(
            "Handoff reverted to bot",
            extra={"context": {"conversation_id": str(conversation_id)}},
        )
        return GateDecision(forward=True, status=BOT, unanswered_count=row.unanswered_count, reason="reverted")

    return GateDecision(forward=True, status=BOT, unanswered_count=row.unanswered_count, reason="bot")


def hand_to_human(db: Session, conversation_id: UUID, *, reason: Optional[str], now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            status=HUMAN,
            last_agent_reply_at=now,
            unanswered_count=0,
            handoff_at=now,
            handoff_reason=reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def return_to_bot(db: Session, conversation_id: UUID, *, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(status=BOT, unanswered_count=0, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def record_agent_reply(db: Session, conversation_id: UUID, *, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_agent_reply_at=now, unanswered_count=0, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def set_conversation_status(
    db: Session,
    conversation_id: UUID,
    target: str,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Result[StatusChange]:
    """Operator or automation status change. Re-applying the current status refreshes its counters."""
    try:
        target_status = parse_status(target)
    except ValueError:
        return Result.failure(f"Invalid status: {target}", "invalid_status")

    conversation = get_conversation(db, conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")

    current = parse_status(conversation.status)
    if current != target_status:
        transition(current, target_status)

    if target_status == ConversationStatus.HUMAN:
        if current == target_status:
            record_agent_reply(db, conversation_id, now=now)
        else:
            hand_to_human(db, conversation_id, reason=reason, now=now)
    else:
        return_to_bot(db, conversation_id, now=now)

    logger.info(
        f"Conversation status {current.value} -> {target_status.value}",
        extra={"context": {"conversation_id": str(conversation_id), "reason": reason}},
    )
    return Result.success(
        StatusChange(
            conversation_id=conversation_id,
            old_status=current.value,
            new_status=target_status.value,
            changed=current != target_status,
        )
    )


def strip_handoff_marker(content: Optional[str], marker: Optional[str] = None) -> tuple[str, bool]:
    marker = marker or settings.handoff_marker
    if not content:
        return "", False
    if marker not in content:
        return content, False
    return content.replace(marker, "").strip(), True
