"""
Pydantic schemas for canonical records and API payloads.

This module contains:
- Canonical records (Message, Chat, Contact) shared by storage, the
  ingestion pipeline and the API
- Request/response models for the HTTP routes
- The push-channel envelope

JSON keys are camelCase; Python attributes are snake_case.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    STICKER = "sticker"
    OTHER = "other"


# Provider type names that differ from ours
_PROVIDER_TYPE_ALIASES = {"chat": MessageType.TEXT}


def normalize_message_type(value: Optional[str]) -> MessageType:
    """Map a provider message type onto MessageType, unknown kinds become OTHER."""
    if not value:
        return MessageType.OTHER
    value = value.lower()
    if value in _PROVIDER_TYPE_ALIASES:
        return _PROVIDER_TYPE_ALIASES[value]
    try:
        return MessageType(value)
    except ValueError:
        return MessageType.OTHER


_record_config = {
    "populate_by_name": True,
    "from_attributes": True,
    "use_enum_values": True,
}


# =============================================================================
# Canonical Records
# =============================================================================

class MessageRecord(BaseModel):
    """
    Canonical message as persisted and published.

    timestamp is epoch milliseconds. media_url and mime_type are only set
    when the media payload was fetched successfully.
    """
    id: str = Field(..., min_length=1, description="Provider message id")
    chat_id: str = Field(..., alias="chatId")
    sender_id: str = Field(..., alias="senderId")
    text: Optional[str] = None
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")
    is_group: bool = Field(False, alias="isGroup")
    from_me: bool = Field(False, alias="fromMe")
    type: MessageType = MessageType.TEXT
    has_media: bool = Field(False, alias="hasMedia")
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    mime_type: Optional[str] = Field(None, alias="mimeType")
    caption: Optional[str] = None

    model_config = _record_config


class ChatRecord(BaseModel):
    """Canonical chat. last_message_id is not checked against stored messages."""
    id: str = Field(..., min_length=1)
    name: str
    is_group: bool = Field(False, alias="isGroup")
    unread_count: int = Field(0, ge=0, alias="unreadCount")
    last_message_id: Optional[str] = Field(None, alias="lastMessageId")

    model_config = _record_config


class ContactRecord(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    number: str
    is_business: bool = Field(False, alias="isBusiness")

    model_config = _record_config


# =============================================================================
# Pydantic Request/Response Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Body of POST /send-message.

    Both fields are optional here so the route can answer 400 itself
    instead of FastAPI's 422.
    """
    chat_id: Optional[str] = Field(None, alias="chatId")
    message: Optional[str] = None

    model_config = {"populate_by_name": True}


class SendMessageResponse(BaseModel):
    success: bool
    message_id: Optional[str] = Field(None, alias="messageId")
    error: Optional[str] = None

    model_config = {"populate_by_name": True}


class StatusResponse(BaseModel):
    """Response model for GET /status."""
    status: str = Field(default="running", description="Process liveness")
    whatsapp_client_ready: bool = Field(..., alias="whatsAppClientReady")
    state: str = Field(..., description="Current session state")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


# =============================================================================
# Push Channel
# =============================================================================

class EventType(str, Enum):
    NEW_MESSAGE = "NEW_MESSAGE"
    WHATSAPP_READY = "WHATSAPP_READY"


class EventEnvelope(BaseModel):
    """Frame sent to every push-channel subscriber."""
    type: EventType
    payload: dict[str, Any]

    model_config = {"use_enum_values": True}

    @classmethod
    def new_message(cls, record: MessageRecord) -> "EventEnvelope":
        return cls(
            type=EventType.NEW_MESSAGE,
            payload=record.model_dump(mode="json", by_alias=True),
        )

    @classmethod
    def ready(cls) -> "EventEnvelope":
        return cls(type=EventType.WHATSAPP_READY, payload={"status": "ready"})
