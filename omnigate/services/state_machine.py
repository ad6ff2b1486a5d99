from enum import Enum


class ConversationStatus(str, Enum):
    BOT = "bot"
    HUMAN = "human"


VALID_TRANSITIONS = {
    ConversationStatus.BOT: [ConversationStatus.HUMAN],
    ConversationStatus.HUMAN: [ConversationStatus.BOT],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def parse_status(value: str) -> ConversationStatus:
    """Coerce a stored or requested status string. Raises ValueError on unknown values."""
    return ConversationStatus(value)


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status
