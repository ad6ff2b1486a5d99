"""Real-time notification sink.

Events are published to Redis pub/sub; whatever transport fans them out to
operator consoles subscribes there. Publishing never fails the caller.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from omnigate.logging_config import get_logger

logger = get_logger("notification_service")

MESSAGE_NEW = "message:new"
CONVERSATION_NEW = "conversation:new"
MESSAGE_STATUS = "message:status"
STATUS_CHANGE = "status:change"


class Notifier:
    def __init__(self, client: Optional[aioredis.Redis], channel_prefix: str = "omnigate"):
        self.client = client
        self.channel_prefix = channel_prefix

    async def publish(self, event: str, payload: dict[str, Any], *, workspace_id=None, conversation_id=None) -> None:
        targets = []
        if workspace_id:
            targets.append(f"{self.channel_prefix}:workspace:{workspace_id}")
        if conversation_id:
            targets.append(f"{self.channel_prefix}:conversation:{conversation_id}")
        if self.client is None or not targets:
            return

        message = json.dumps({"event": event, "data": payload}, default=str)
        try:
            for target in targets:
                await self.client.publish(target, message)
        except Exception as e:
            logger.warning(
                "Notification publish failed",
                extra={"context": {"event": event, "conversation_id": str(conversation_id), "error": str(e)}},
            )

    async def new_message(self, workspace_id, conversation_id, message: dict[str, Any]) -> None:
        await self.publish(
            MESSAGE_NEW,
            {"conversation_id": conversation_id, "message": message},
            workspace_id=workspace_id,
            conversation_id=conversation_id,
        )

    async def new_conversation(self, workspace_id, conversation: dict[str, Any]) -> None:
        await self.publish(CONVERSATION_NEW, {"conversation": conversation}, workspace_id=workspace_id)

    async def message_status(self, workspace_id, conversation_id, message_id, status: str) -> None:
        await self.publish(
            MESSAGE_STATUS,
            {"conversation_id": conversation_id, "message_id": message_id, "status": status},
            workspace_id=workspace_id,
            conversation_id=conversation_id,
        )

    async def status_change(self, workspace_id, conversation_id, status: str, reason: Optional[str] = None) -> None:
        await self.publish(
            STATUS_CHANGE,
            {"conversation_id": conversation_id, "status": status, "reason": reason},
            workspace_id=workspace_id,
            conversation_id=conversation_id,
        )
