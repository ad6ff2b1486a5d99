from omnigate.models.bot import Bot
from omnigate.models.channel import Channel
from omnigate.models.contact import Contact
from omnigate.models.conversation import Conversation
from omnigate.models.forward_outbox import ForwardOutbox
from omnigate.models.message import Message

__all__ = [
    "Bot",
    "Channel",
    "Contact",
    "Conversation",
    "Message",
    "ForwardOutbox",
]
