from omnigate.services.result import Result
from omnigate.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)

__all__ = [
    "ConversationStatus",
    "InvalidTransitionError",
    "Result",
    "can_transition",
    "transition",
]
