"""
Raw provider payloads and the interface the bridge expects from a provider.

The provider (a WhatsApp Web automation, a test double, ...) pushes
ProviderEvent values into the sink it was given. Events are a discriminated
union on ``kind``; anything else is rejected at the dispatcher.
"""

from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter


# =============================================================================
# Raw Records
# =============================================================================

class RawMessage(BaseModel):
    """A message as reported by the provider (timestamp in seconds)."""
    id: str = Field(..., min_length=1)
    from_: str = Field(..., alias="from", min_length=1)
    author: Optional[str] = Field(None, description="Sender inside a group chat")
    body: Optional[str] = None
    timestamp: int = Field(..., ge=0, description="Epoch seconds")
    is_group: bool = Field(False, alias="isGroupMsg")
    from_me: bool = Field(False, alias="fromMe")
    type: str = "chat"
    has_media: bool = Field(False, alias="hasMedia")
    mimetype: Optional[str] = None
    caption: Optional[str] = None

    model_config = {"populate_by_name": True}


class RawChat(BaseModel):
    id: str
    name: str
    is_group: bool = Field(False, alias="isGroup")
    unread_count: int = Field(0, alias="unreadCount")
    last_message_id: Optional[str] = Field(None, alias="lastMessageId")

    model_config = {"populate_by_name": True}


class RawContact(BaseModel):
    id: str
    user: str = Field(..., description="User part of the id, e.g. the phone number")
    name: Optional[str] = None
    pushname: Optional[str] = None
    number: str
    is_business: bool = Field(False, alias="isBusiness")

    model_config = {"populate_by_name": True}


class MediaPayload(BaseModel):
    """Downloaded media. data is base64 encoded."""
    data: str
    mimetype: Optional[str] = None
    filename: Optional[str] = None


# =============================================================================
# Provider Events
# =============================================================================

class QrEvent(BaseModel):
    kind: Literal["qr"] = "qr"
    code: str


class AuthenticatedEvent(BaseModel):
    kind: Literal["authenticated"] = "authenticated"


class AuthFailureEvent(BaseModel):
    kind: Literal["auth_failure"] = "auth_failure"
    message: str = ""


class ReadyEvent(BaseModel):
    kind: Literal["ready"] = "ready"


class DisconnectedEvent(BaseModel):
    kind: Literal["disconnected"] = "disconnected"
    reason: str = "UNKNOWN"


class StateChangeEvent(BaseModel):
    kind: Literal["change_state"] = "change_state"
    state: str


class MessageEvent(BaseModel):
    kind: Literal["message"] = "message"
    message: RawMessage


class RevokeEvent(BaseModel):
    kind: Literal["message_revoke"] = "message_revoke"
    message_id: Optional[str] = None
    chat_id: Optional[str] = None


ProviderEvent = Annotated[
    Union[
        QrEvent,
        AuthenticatedEvent,
        AuthFailureEvent,
        ReadyEvent,
        DisconnectedEvent,
        StateChangeEvent,
        MessageEvent,
        RevokeEvent,
    ],
    Field(discriminator="kind"),
]

provider_event_adapter: TypeAdapter = TypeAdapter(ProviderEvent)


def parse_provider_event(data: Any):
    """Validate a raw dict (or pass through an event model) into a ProviderEvent."""
    if isinstance(data, BaseModel):
        return data
    return provider_event_adapter.validate_python(data)


EventSink = Callable[[Any], Awaitable[None]]


class MessagingProvider(Protocol):
    """What the bridge needs from the messaging network client."""

    def set_event_sink(self, sink: EventSink) -> None:
        ...

    async def initialize(self) -> None:
        ...

    async def send_message(self, chat_id: str, text: str) -> str:
        """Send a text message and return the provider message id."""
        ...

    async def get_chats(self) -> list[RawChat]:
        ...

    async def get_contacts(self) -> list[RawContact]:
        ...

    async def download_media(self, message_id: str) -> MediaPayload:
        ...

    async def destroy(self) -> None:
        ...
