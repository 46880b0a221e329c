"""
Webhook ingestion: verify a LINE delivery, map its events to messages and
store them.

A delivery is acknowledged as a whole once every event has been attempted.
Problems with one event (no user, unsupported kind, relay failure, storage
failure) skip that event and never fail the batch.
"""

import json
import logging
from collections import Counter
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from oa_console import storage
from oa_console.errors import (
    InvalidSignatureError,
    MediaRelayError,
    MissingSignatureError,
    PayloadValidationError,
    StorageError,
)
from oa_console.media import MediaRelay
from oa_console.metrics import record_webhook_event
from oa_console.schemas import (
    Message,
    MessageDirection,
    MessageType,
    TextContent,
    WebhookBatch,
    WebhookEvent,
)
from oa_console.utils import verify_line_signature

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"


def verify_delivery(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Check the x-line-signature header against the raw body.

    Must run before the body is parsed.

    Raises:
        MissingSignatureError: header absent or empty
        InvalidSignatureError: signature does not match
    """
    if not signature:
        raise MissingSignatureError("missing signature")
    if not verify_line_signature(raw_body, signature, secret):
        raise InvalidSignatureError("invalid signature")


def parse_batch(raw_body: bytes) -> list[dict]:
    """
    Parse a verified body into its list of raw events.

    Raises:
        PayloadValidationError: not JSON, or not an object with an events list
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadValidationError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise PayloadValidationError("body must be a JSON object")
    try:
        return WebhookBatch.model_validate(payload).events
    except ValidationError as e:
        raise PayloadValidationError(f"invalid webhook payload: {e}") from e


class IngestionSummary:
    """Per-outcome event counts for one delivery."""

    def __init__(self):
        self.counts = Counter()

    def add(self, result: str) -> None:
        self.counts[result] += 1
        record_webhook_event(result)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def as_log_data(self) -> dict:
        return {"events": self.total, **{f"events_{k}": v for k, v in sorted(self.counts.items())}}


class WebhookIngestor:
    def __init__(self, db: Session, relay: MediaRelay):
        self.db = db
        self.relay = relay

    async def to_message(self, event: WebhookEvent) -> Optional[Message]:
        """
        Map a message event to an incoming Message.

        Returns None for events that are skipped by design (no user id,
        unsupported message kind).

        Raises:
            MediaRelayError: the attachment could not be mirrored
        """
        user_id = event.source.user_id if event.source else None
        if not user_id:
            logger.debug("Skipping event without source.userId")
            return None
        if event.message is None:
            logger.debug("Skipping message event without message body")
            return None

        if event.message.type == MessageType.TEXT.value:
            content = TextContent(text=event.message.text or "")
        elif event.message.type == MessageType.IMAGE.value:
            content = await self.relay.relay(event.message.id)
        else:
            logger.debug(f"Skipping unsupported message type {event.message.type}")
            return None

        return Message(
            id=event.message.id,
            counterpart_id=user_id,
            direction=MessageDirection.INCOMING,
            content=content,
            timestamp=event.timestamp,
            webhook_event_id=event.webhook_event_id,
        )

    async def ingest_event(self, raw_event: dict) -> str:
        """Process one event and return its outcome label."""
        if not isinstance(raw_event, dict) or raw_event.get("type") != MESSAGE_EVENT:
            return "ignored"

        try:
            event = WebhookEvent.model_validate(raw_event)
        except ValidationError as e:
            logger.warning(f"Skipping malformed message event: {e}")
            return "skipped"

        try:
            message = await self.to_message(event)
        except MediaRelayError as e:
            logger.error(f"Dropping event {event.webhook_event_id}: {e}")
            return "relay_failed"
        except ValidationError as e:
            logger.warning(f"Skipping event {event.webhook_event_id}: {e}")
            return "skipped"

        if message is None:
            return "skipped"

        try:
            _, created = storage.insert_if_absent(self.db, message)
        except StorageError as e:
            logger.error(f"Dropping event {event.webhook_event_id}: {e}")
            return "error"

        return "created" if created else "duplicate"

    async def ingest(self, raw_events: list[dict]) -> IngestionSummary:
        """Process events in order; a failing event never aborts the rest."""
        summary = IngestionSummary()
        for raw_event in raw_events:
            try:
                result = await self.ingest_event(raw_event)
            except Exception as e:
                logger.exception(f"Unexpected error processing webhook event: {e}")
                result = "error"
            summary.add(result)
        logger.info(f"Webhook batch processed: {dict(summary.counts)}")
        return summary
