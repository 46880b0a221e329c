"""
Operator sends: validate, push through LINE, then record as outgoing.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from oa_console import storage
from oa_console.errors import PayloadValidationError
from oa_console.line_api import LineMessagingClient
from oa_console.metrics import record_outbound_message
from oa_console.object_storage import ObjectStorage
from oa_console.schemas import (
    IMAGE_PLACEHOLDER,
    ImageContent,
    Message,
    MessageDirection,
    MessageType,
    SendMessageRequest,
    TextContent,
)
from oa_console.utils import generate_message_id, now_ms

logger = logging.getLogger(__name__)


def validate_send(request: SendMessageRequest) -> tuple[MessageType, TextContent | ImageContent]:
    """
    Check required fields for the requested message type.

    Raises:
        PayloadValidationError: missing odna, text or imageUrl, or unknown type
    """
    if not request.odna:
        raise PayloadValidationError("missing odna")

    try:
        msg_type = MessageType(request.type or MessageType.TEXT.value)
    except ValueError:
        raise PayloadValidationError(f"unsupported message type: {request.type}")

    if msg_type is MessageType.TEXT:
        if not request.text:
            raise PayloadValidationError("missing text")
        return msg_type, TextContent(text=request.text)

    if not request.image_url:
        raise PayloadValidationError("missing imageUrl")
    return msg_type, ImageContent(url=request.image_url, caption=request.text or IMAGE_PLACEHOLDER)


class OutboundSender:
    def __init__(
        self,
        db: Session,
        line_client: LineMessagingClient,
        object_storage: Optional[ObjectStorage] = None,
    ):
        self.db = db
        self.line_client = line_client
        self.object_storage = object_storage

    async def send(self, request: SendMessageRequest) -> Message:
        """
        Push a message to a LINE user and store it.

        Nothing is stored when the push fails. If storing fails after a
        successful push, the error still propagates; the pushed message
        is not recalled.

        Raises:
            PayloadValidationError: before any side effect
            LineApiError: push failed
            StorageError: push succeeded, storing failed
        """
        msg_type, content = validate_send(request)

        try:
            if msg_type is MessageType.TEXT:
                await self.line_client.push_text(request.odna, content.text)
            else:
                await self.line_client.push_image(request.odna, content.url)
        except Exception:
            record_outbound_message(msg_type.value, "push_failed")
            raise

        if isinstance(content, ImageContent) and self.object_storage is not None:
            # images uploaded through /upload are re-signed on read like relayed ones
            object_name = self.object_storage.object_name_for_url(content.url)
            content = content.model_copy(update={"object_name": object_name})

        message = Message(
            id=generate_message_id(),
            counterpart_id=request.odna,
            direction=MessageDirection.OUTGOING,
            content=content,
            timestamp=now_ms(),
        )

        try:
            stored, _ = storage.insert_if_absent(self.db, message)
        except Exception:
            record_outbound_message(msg_type.value, "store_failed")
            raise

        record_outbound_message(msg_type.value, "sent")
        logger.info(f"Sent {msg_type.value} message {stored.id} to {request.odna}")
        return stored
