from omnigate.schemas.conversation import ConversationOut, MessageOut, SendReplyResponse, StatusUpdateRequest
from omnigate.schemas.internal import AIResponseRequest, AIResponseResponse, UpdateStateRequest
from omnigate.schemas.webhook import WebhookAck

__all__ = [
    "AIResponseRequest",
    "AIResponseResponse",
    "ConversationOut",
    "MessageOut",
    "SendReplyResponse",
    "StatusUpdateRequest",
    "UpdateStateRequest",
    "WebhookAck",
]
