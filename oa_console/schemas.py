"""
Pydantic schemas for request/response validation.

This module contains:
- The Message domain model (tagged text/image content, flat wire form)
- Request models for the send and upload endpoints
- Response models for API responses
- Models for the LINE webhook payload
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_serializer, model_validator


IMAGE_PLACEHOLDER = "Sent an image"


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


# =============================================================================
# Message Domain Model
# =============================================================================

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    url: str
    caption: str = IMAGE_PLACEHOLDER
    # set when the image lives in our bucket; never on the wire
    object_name: Optional[str] = None


MessageContent = Annotated[Union[TextContent, ImageContent], Field(discriminator="type")]


class Message(BaseModel):
    """
    A single chat message.

    In memory the payload is a tagged union, so an image always carries a
    URL and a text message never does. On the wire it is the flat record:

        {"id", "odna", "direction", "type", "text", "imageUrl",
         "timestamp", "webhookEventId"}
    """
    id: str = Field(..., min_length=1)
    counterpart_id: str = Field(..., alias="odna", min_length=1)
    direction: MessageDirection
    content: MessageContent
    timestamp: int
    webhook_event_id: Optional[str] = Field(None, alias="webhookEventId")

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def unflatten(cls, data: Any) -> Any:
        """Accept the flat wire record and build the tagged content."""
        if not isinstance(data, dict) or "content" in data:
            return data
        data = dict(data)
        msg_type = data.pop("type", MessageType.TEXT.value)
        if isinstance(msg_type, MessageType):
            msg_type = msg_type.value
        text = data.pop("text", None)
        image_url = data.pop("imageUrl", data.pop("image_url", None))
        object_name = data.pop("image_object", None)
        if msg_type == MessageType.IMAGE.value:
            data["content"] = {
                "type": "image",
                "url": image_url,
                "caption": text or IMAGE_PLACEHOLDER,
                "object_name": object_name,
            }
        else:
            data["content"] = {"type": msg_type, "text": text if text is not None else ""}
        return data

    @model_serializer(mode="plain")
    def flatten(self) -> dict:
        return {
            "id": self.id,
            "odna": self.counterpart_id,
            "direction": self.direction.value,
            "type": self.type.value,
            "text": self.text,
            "imageUrl": self.image_url,
            "timestamp": self.timestamp,
            "webhookEventId": self.webhook_event_id,
        }

    @property
    def type(self) -> MessageType:
        return MessageType(self.content.type)

    @property
    def text(self) -> str:
        if isinstance(self.content, ImageContent):
            return self.content.caption
        return self.content.text

    @property
    def image_url(self) -> Optional[str]:
        if isinstance(self.content, ImageContent):
            return self.content.url
        return None

    @property
    def sort_key(self) -> tuple:
        """Chronological ordering key; id breaks timestamp ties."""
        return (self.timestamp, self.id)


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Body of POST /messages.

    Only the shape is checked here; which fields are required depends on
    the message type and is enforced by the send handler so that the
    endpoint can answer 400 rather than 422.
    """
    odna: Optional[str] = None
    text: Optional[str] = None
    type: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {"odna": "U4af4980629...", "text": "Hello"},
                {"odna": "U4af4980629...", "type": "image", "imageUrl": "https://..."},
            ]
        },
    }


class UploadInitRequest(BaseModel):
    file_name: Optional[str] = Field(None, alias="fileName")
    file_type: Optional[str] = Field(None, alias="fileType")

    model_config = {"populate_by_name": True}


class UploadCompleteRequest(BaseModel):
    path: Optional[str] = None


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for successful webhook processing."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessagePage(BaseModel):
    """
    Response model for GET /messages.

    Messages are in chronological (ascending) order; has_more tells the
    caller whether older messages exist before the first one.
    """
    messages: list[Message] = Field(default_factory=list)
    has_more: bool = Field(False, alias="hasMore", serialization_alias="hasMore")

    model_config = {"populate_by_name": True}


class UserProfile(BaseModel):
    user_id: str = Field(..., alias="userId", serialization_alias="userId")
    display_name: str = Field(..., alias="displayName", serialization_alias="displayName")
    picture_url: Optional[str] = Field(None, alias="pictureUrl", serialization_alias="pictureUrl")
    status_message: Optional[str] = Field(None, alias="statusMessage", serialization_alias="statusMessage")

    model_config = {"populate_by_name": True}


class UploadInitResponse(BaseModel):
    upload_url: str = Field(..., alias="uploadUrl", serialization_alias="uploadUrl")
    path: str

    model_config = {"populate_by_name": True}


class UploadCompleteResponse(BaseModel):
    url: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# LINE Webhook Payload
# =============================================================================

class EventSource(BaseModel):
    type: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")

    model_config = {"populate_by_name": True, "extra": "allow"}


class EventMessage(BaseModel):
    id: str
    type: str
    text: Optional[str] = None

    model_config = {"extra": "allow"}


class WebhookEvent(BaseModel):
    """
    A single webhook event. Only the fields ingestion reads are declared;
    everything else the platform sends is kept but ignored.
    """
    type: str
    timestamp: int
    webhook_event_id: Optional[str] = Field(None, alias="webhookEventId")
    source: Optional[EventSource] = None
    message: Optional[EventMessage] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class WebhookBatch(BaseModel):
    destination: Optional[str] = None
    events: list[dict] = Field(default_factory=list)
