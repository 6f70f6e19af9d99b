"""Pydantic schemas for stored chat messages.

- MessageCreate: fields supplied by the relay when persisting
- MessageRecord: a stored message, including its generated ``_id``

Records serialise with ``by_alias=True`` so the ID appears as ``_id`` in
frames and HTTP responses, which is the key existing clients read.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageCreate(BaseModel):
    """A message about to be persisted.

    ``sender`` is None when the sending connection never authenticated.
    """
    sender: Optional[str] = Field(default=None, description="Sender account ID")
    to: str = Field(..., description="Recipient account ID")
    text: Optional[str] = Field(default=None, description="Message text")
    file: Optional[str] = Field(default=None, description="Stored attachment filename")
    createdAt: datetime = Field(default_factory=utc_now, description="Creation time (UTC)")


class MessageRecord(MessageCreate):
    """A persisted message."""
    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        serialization_alias="_id",
        description="Unique message ID",
    )

    def to_frame(self) -> dict:
        """JSON-ready dict: ``{text, sender, to, file, createdAt, _id}``."""
        return self.model_dump(mode="json", by_alias=True)
