"""
Wire messages exchanged over the realtime WebSocket.

Every frame is a JSON object with a ``type`` discriminator. Inbound frames
are parsed into a tagged union so the lifecycle handler can dispatch on the
concrete model; outbound frames are pydantic models serialised with their
camelCase aliases.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from lexidraft.exceptions import MessageValidationError

SubjectRef = int | str


class _WireModel(BaseModel):  # type: ignore[misc]
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Inbound
# ============================================================================


class AuthenticateMessage(_WireModel):
    # "auth" is what the first web client release sends
    type: Literal["authenticate", "auth"]
    # Absent or non-string tokens reach the verifier as missing_token
    token: str | None = None

    @field_validator("token", mode="before")
    @classmethod
    def drop_non_string_token(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None


class HeartbeatMessage(_WireModel):
    type: Literal["heartbeat", "ping"]
    timestamp: int | float | str | None = None


class JoinMessage(_WireModel):
    type: Literal["join"]
    consultation_id: SubjectRef = Field(alias="consultationId")


class ChatSendMessage(_WireModel):
    type: Literal["message"]
    consultation_id: SubjectRef | None = Field(
        default=None, alias="consultationId"
    )
    recipient_ids: list[SubjectRef] = Field(
        default_factory=list, alias="recipientIds"
    )
    content: str
    message_type: str = Field(default="text", alias="messageType")
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_name: str | None = Field(default=None, alias="fileName")


class TypingMessage(_WireModel):
    type: Literal["typing"]
    recipient_id: SubjectRef = Field(alias="recipientId")
    room_id: SubjectRef | None = Field(default=None, alias="roomId")
    is_typing: bool = Field(default=True, alias="isTyping")


class VideoSignalMessage(_WireModel):
    type: Literal["videoSignal"]
    to: SubjectRef
    signal: Any


InboundMessage = Annotated[
    Union[
        AuthenticateMessage,
        HeartbeatMessage,
        JoinMessage,
        ChatSendMessage,
        TypingMessage,
        VideoSignalMessage,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> InboundMessage:
    """
    Validate a decoded frame against the inbound message union.

    Args:
        data: The JSON-decoded frame.

    Returns:
        The concrete inbound message model.

    Raises:
        MessageValidationError: If the frame is not an object, has no
            ``type``, has an unknown ``type`` or violates its schema.
    """
    if not isinstance(data, dict):
        raise MessageValidationError("Message must be a JSON object")
    if "type" not in data:
        raise MessageValidationError("Message is missing 'type'")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as ex:
        raise MessageValidationError(
            f"Invalid '{data['type']}' message: {ex.error_count()} error(s)"
        ) from ex


# ============================================================================
# Outbound
# ============================================================================


class OutboundMessage(_WireModel):
    """Base envelope for server-pushed frames."""

    type: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConnectedMessage(OutboundMessage):
    type: Literal["connected"] = "connected"
    message: str


class AuthSuccessMessage(OutboundMessage):
    type: Literal["auth_success"] = "auth_success"
    user_id: str = Field(alias="userId")
    role: str | None = None
    message: str = "Authentication successful"


class AuthErrorMessage(OutboundMessage):
    type: Literal["auth_error"] = "auth_error"
    message: str = "Authentication failed"
    reason: str | None = None


class HeartbeatReply(OutboundMessage):
    type: Literal["heartbeat", "pong"]
    timestamp: int | float | str | None = None


class NotificationMessage(OutboundMessage):
    type: Literal["notification"] = "notification"
    data: Any


class ChatMessageEvent(OutboundMessage):
    type: Literal["chat_message"] = "chat_message"
    data: Any


class ChatMessagePayload(_WireModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    sender_id: str = Field(alias="senderId")
    consultation_id: SubjectRef | None = Field(
        default=None, alias="consultationId"
    )
    content: str
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    type: str = "text"
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_name: str | None = Field(default=None, alias="fileName")


class NewMessageEvent(OutboundMessage):
    type: Literal["newMessage"] = "newMessage"
    message: ChatMessagePayload


class TypingIndicatorMessage(OutboundMessage):
    type: Literal["typing_indicator"] = "typing_indicator"
    data: dict[str, Any]


class VideoSignalEvent(OutboundMessage):
    type: Literal["videoSignal"] = "videoSignal"
    from_: str = Field(alias="from")
    signal: Any


class JoinedMessage(OutboundMessage):
    type: Literal["joined"] = "joined"
    room_id: SubjectRef = Field(alias="roomId")
    success: bool = True


class MessageSentMessage(OutboundMessage):
    type: Literal["message_sent"] = "message_sent"
    message_id: str = Field(alias="messageId")
    delivered: bool


class BroadcastMessage(OutboundMessage):
    type: Literal["broadcast"] = "broadcast"
    data: Any


class ErrorMessage(OutboundMessage):
    type: Literal["error"] = "error"
    message: str
