from sqlalchemy import func, text
from sqlalchemy.orm import Session

from omnigate.logging_config import get_logger
from omnigate.models import Conversation, ForwardOutbox

logger = get_logger("health_service")


def check_database(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def get_system_health(db: Session) -> dict:
    """Conversation ownership and forward backlog counters."""
    conversations = dict(
        db.query(Conversation.status, func.count(Conversation.id)).group_by(Conversation.status).all()
    )
    outbox = dict(db.query(ForwardOutbox.status, func.count(ForwardOutbox.id)).group_by(ForwardOutbox.status).all())
    return {
        "conversations": {"bot": conversations.get("bot", 0), "human": conversations.get("human", 0)},
        "forward_outbox": {
            "pending": outbox.get("PENDING", 0),
            "processing": outbox.get("PROCESSING", 0),
            "failed": outbox.get("FAILED", 0),
            "sent": outbox.get("SENT", 0),
        },
    }
