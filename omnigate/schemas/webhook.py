from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    status: str = "ok"
    processed: int = 0
    statuses: int = 0
    detail: Optional[str] = None
