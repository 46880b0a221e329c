"""
Media relay: copy an attachment from LINE into object storage.

Also re-signs the read URLs of stored images when messages are served.
"""

import logging

from starlette.concurrency import run_in_threadpool

from oa_console.errors import MediaRelayError, ObjectStorageError, UpstreamError
from oa_console.line_api import LineMessagingClient
from oa_console.metrics import record_media_relay
from oa_console.object_storage import ObjectStorage
from oa_console.schemas import ImageContent, Message, MessagePage

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPE = "image/jpeg"


def object_name_for(message_id: str) -> str:
    """Deterministic object name, so a redelivered event overwrites instead of duplicating."""
    return f"{message_id}.jpg"


class MediaRelay:
    def __init__(self, line_client: LineMessagingClient, storage: ObjectStorage):
        self.line_client = line_client
        self.storage = storage

    async def relay(self, source_message_id: str) -> ImageContent:
        """
        Download the content of a LINE message and re-upload it.

        Returns:
            Image content pointing at the stored copy, with its object name

        Raises:
            MediaRelayError: download, upload or URL signing failed
        """
        object_name = object_name_for(source_message_id)
        try:
            download = await self.line_client.get_message_content(source_message_id)
            # MinIO's client is blocking
            await run_in_threadpool(
                self.storage.put_bytes,
                object_name,
                download.data,
                download.content_type or IMAGE_CONTENT_TYPE,
            )
            url = await run_in_threadpool(self.storage.durable_url, object_name)
        except UpstreamError as e:
            record_media_relay("failed")
            raise MediaRelayError(f"relay of message {source_message_id} failed: {e}") from e

        record_media_relay("ok")
        logger.info(f"Relayed content of message {source_message_id} to {object_name}")
        return ImageContent(url=url, object_name=object_name)


def refresh_image_url(message: Message, storage: ObjectStorage) -> Message:
    """
    Re-sign the URL of an image kept in our bucket.

    The stored URL is served unchanged for text messages, for images hosted
    elsewhere, and when signing fails.
    """
    content = message.content
    if not isinstance(content, ImageContent) or not content.object_name:
        return message
    try:
        url = storage.durable_url(content.object_name)
    except ObjectStorageError as e:
        logger.warning(f"Serving stored URL for message {message.id}: {e}")
        return message
    return message.model_copy(update={"content": content.model_copy(update={"url": url})})


def refresh_page(page: MessagePage, storage: ObjectStorage) -> MessagePage:
    return MessagePage(
        messages=[refresh_image_url(m, storage) for m in page.messages],
        has_more=page.has_more,
    )
