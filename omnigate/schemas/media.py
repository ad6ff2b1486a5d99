from typing import Optional

from pydantic import BaseModel


class MediaResolveResponse(BaseModel):
    media_type: str
    storage_key: str
    caption: Optional[str] = None
    url: str
