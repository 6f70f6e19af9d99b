"""Message routing between identified connections.

Inbound envelope::

    {"to": "<recipient id>", "text": "...", "file": {"name": "...", "data": "data:..."}}

``to`` is required, and at least one of ``text``/``file`` must be present.
Anything else is dropped without a reply. Valid messages are persisted
first and then pushed to every live connection of the recipient; a
recipient with no live connections simply reads it later from history.

If persistence fails the message is NOT forwarded, since the relayed
frame carries the stored ``_id``.
"""
import json
import logging
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from chatrelay.errors import MessagePersistenceError
from chatrelay.messages.schemas import MessageCreate, MessageRecord

from .attachments import AttachmentIngestor, AttachmentResult, FileAttachment
from .registry import Connection, ConnectionRegistry, deliver

logger = logging.getLogger(__name__)


class MessageEnvelope(BaseModel):
    """Inbound chat message as sent by a client."""
    to: Optional[str] = Field(default=None, description="Recipient account ID")
    text: Optional[str] = Field(default=None, description="Message text")
    file: Optional[FileAttachment] = Field(default=None, description="Inline attachment")

    @field_validator("to", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def routable(self) -> bool:
        return bool(self.to) and (bool(self.text) or self.file is not None)


class RouteOutcome(str, Enum):
    DROPPED = "dropped"
    PERSIST_FAILED = "persist_failed"
    ROUTED = "routed"


class RouteResult(BaseModel):
    outcome: RouteOutcome
    record: Optional[MessageRecord] = None
    attachment: Optional[AttachmentResult] = None
    delivered: int = 0


def parse_frame(raw: Union[str, bytes]) -> Optional[dict]:
    """Decode a JSON object frame. Returns None for anything else."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


class MessageRouter:
    """Validates envelopes, stores messages and forwards them to recipients.

    Args:
        registry: Live connections, used to find the recipient.
        store: Message persistence; must provide ``async create(MessageCreate)``.
        ingestor: Attachment ingestor for envelopes carrying a file.
    """

    def __init__(self, registry: ConnectionRegistry, store: Any, ingestor: AttachmentIngestor) -> None:
        self.registry = registry
        self.store = store
        self.ingestor = ingestor

    async def route(self, connection: Connection, payload: Optional[dict]) -> RouteResult:
        if payload is None:
            logger.debug("[Router] Dropping non-object frame from %r", connection)
            return RouteResult(outcome=RouteOutcome.DROPPED)
        try:
            envelope = MessageEnvelope.model_validate(payload)
        except ValidationError as e:
            logger.debug("[Router] Dropping malformed envelope from %r: %s", connection, e)
            return RouteResult(outcome=RouteOutcome.DROPPED)
        if not envelope.routable:
            logger.debug("[Router] Dropping envelope without recipient or content from %r", connection)
            return RouteResult(outcome=RouteOutcome.DROPPED)

        attachment = None
        if envelope.file is not None:
            attachment = await self.ingestor.ingest(envelope.file)
            if not attachment.stored:
                logger.warning(
                    "[Router] Attachment %s for %s not stored; relaying the name anyway",
                    attachment.filename,
                    envelope.to,
                )

        message = MessageCreate(
            sender=connection.user_id,
            to=envelope.to,
            text=envelope.text,
            file=attachment.filename if attachment else None,
        )
        try:
            record = await self.store.create(message)
        except MessagePersistenceError as e:
            logger.error("[Router] %s; not forwarding to %s", e.message, envelope.to)
            return RouteResult(outcome=RouteOutcome.PERSIST_FAILED, attachment=attachment)
        except Exception:
            logger.exception("[Router] Unexpected store failure; not forwarding to %s", envelope.to)
            return RouteResult(outcome=RouteOutcome.PERSIST_FAILED, attachment=attachment)

        recipients = self.registry.find_by_identity(envelope.to)
        delivered = await deliver(recipients, record.to_frame())
        logger.info(
            "[Router] Message %s from %s to %s delivered to %d/%d connections",
            record.id,
            record.sender,
            record.to,
            delivered,
            len(recipients),
        )
        return RouteResult(
            outcome=RouteOutcome.ROUTED,
            record=record,
            attachment=attachment,
            delivered=delivered,
        )
