"""Inline attachment ingestion.

Clients embed files in message envelopes as data URIs::

    {"name": "photo.png", "data": "data:image/png;base64,iVBORw0..."}

The payload is decoded and written to the uploads directory under a
generated ``<epoch millis>.<ext>`` name, which the static file mount then
serves back. Two attachments with the same extension arriving in the same
millisecond get the same name; the later write wins.
"""
import asyncio
import base64
import binascii
import logging
import re
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from chatrelay.errors import AttachmentWriteError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[\x00/\\]")


class FileAttachment(BaseModel):
    """Attachment as carried in an inbound envelope."""
    name: str = Field(..., description="Original filename, used for the extension")
    data: str = Field(..., description="Data URI with the encoded payload")


class AttachmentResult(BaseModel):
    """Outcome of an ingest. ``filename`` is set even when the write failed."""
    filename: str
    stored: bool
    error: Optional[str] = None


def extension_of(name: str) -> str:
    """Last dot-separated segment of ``name`` (the whole name if it has no dot).

    NUL bytes and path separators are removed so the generated filename
    always stays inside the uploads directory.
    """
    return _UNSAFE_CHARS.sub("", name.split(".")[-1])


def decode_data_uri(data: str) -> bytes:
    """Decode the base64 body of a data URI.

    Everything up to the first comma is treated as the header. A value with
    no comma is decoded as bare base64. Missing padding is tolerated.

    Raises:
        ValueError: If the body is not valid base64.
    """
    _, sep, body = data.partition(",")
    encoded = (body if sep else data).strip()
    encoded += "=" * (-len(encoded) % 4)
    try:
        return base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


class AttachmentIngestor:
    """Decodes data-URI attachments and stores them as files."""

    def __init__(self, upload_dir: str) -> None:
        self.upload_dir = Path(upload_dir)

    def generate_filename(self, name: str) -> str:
        return f"{int(time.time() * 1000)}.{extension_of(name)}"

    def path_for(self, filename: str) -> Path:
        return self.upload_dir / filename

    async def ingest(self, attachment: FileAttachment) -> AttachmentResult:
        """Decode and write one attachment.

        Decode and write failures are logged and reported in the result;
        they are never raised to the caller.
        """
        filename = self.generate_filename(attachment.name)
        try:
            await self._store(filename, attachment.data)
        except AttachmentWriteError as e:
            logger.error(f"[Attachments] {e.message}")
            return AttachmentResult(filename=filename, stored=False, error=e.message)
        return AttachmentResult(filename=filename, stored=True)

    async def _store(self, filename: str, data: str) -> None:
        try:
            content = decode_data_uri(data)
        except ValueError as e:
            raise AttachmentWriteError(str(e), filename) from e

        path = self.path_for(filename)
        try:
            await asyncio.to_thread(self._write, path, content)
        except (OSError, ValueError) as e:
            raise AttachmentWriteError(str(e), filename) from e
        logger.info(f"[Attachments] Saved file: {path} ({len(content)} bytes)")

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
