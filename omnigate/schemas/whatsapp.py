"""Meta WhatsApp Cloud API webhook shapes (only the fields we read)."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class WhatsAppText(BaseModel):
    body: str


class WhatsAppMedia(BaseModel):
    id: str
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None
    voice: Optional[bool] = None
    animated: Optional[bool] = None


class WhatsAppLocation(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class WhatsAppInboundMessage(BaseModel):
    from_number: str
    id: str
    type: str
    timestamp: Optional[str] = None
    text: Optional[WhatsAppText] = None
    image: Optional[WhatsAppMedia] = None
    video: Optional[WhatsAppMedia] = None
    audio: Optional[WhatsAppMedia] = None
    document: Optional[WhatsAppMedia] = None
    sticker: Optional[WhatsAppMedia] = None
    location: Optional[WhatsAppLocation] = None
    contacts: Optional[list[dict[str, Any]]] = None
    reaction: Optional[dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def __init__(self, **data):
        if "from" in data:
            data["from_number"] = data.pop("from")
        super().__init__(**data)


class WhatsAppStatus(BaseModel):
    id: str
    status: str  # sent, delivered, read, failed
    recipient_id: Optional[str] = None
    timestamp: Optional[str] = None
    errors: Optional[list[dict[str, Any]]] = None


class WhatsAppContactProfile(BaseModel):
    wa_id: str
    profile: dict[str, Any] = {}


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: dict[str, Any] = {}
    contacts: list[WhatsAppContactProfile] = []
    # kept as dicts so each message's raw snapshot survives unchanged
    messages: list[dict[str, Any]] = []
    statuses: list[WhatsAppStatus] = []


class WhatsAppChange(BaseModel):
    field: str
    value: WhatsAppValue


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhook(BaseModel):
    object: str
    entry: list[WhatsAppEntry] = []
