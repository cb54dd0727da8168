"""B (binary content) attachments.

Payload layout: <content> <media type> <encoding> [filename]
"""

import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from mcp_bitcom.primitives import ScriptError, parse_chunks
from mcp_bitcom.protocols.base import Protocol, as_text, push_all

logger = logging.getLogger(__name__)

B_PREFIX = b"19HxigV4QyBv3tHpQVcUEQyq1pzZVdoAut"

MEDIA_TYPE_TEXT_PLAIN = "text/plain"
MEDIA_TYPE_TEXT_MARKDOWN = "text/markdown"


class Encoding(str, Enum):
    """Content encodings."""

    UTF8 = "utf-8"
    BINARY = "binary"
    HEX = "hex"
    BASE64 = "base64"


def parse_encoding(value: str) -> Union[Encoding, str]:
    try:
        return Encoding(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class AttachmentRecord(Protocol):
    """Decoded B attachment."""

    tag = B_PREFIX

    content: bytes
    media_type: str
    encoding: Union[Encoding, str]
    filename: Optional[str] = None

    def to_payload(self) -> bytes:
        encoding = self.encoding.value if isinstance(self.encoding, Encoding) else self.encoding
        items = [self.content, self.media_type.encode("utf-8"), encoding.encode("utf-8")]
        if self.filename is not None:
            items.append(self.filename.encode("utf-8"))
        return push_all(items)

    def decoded_content(self) -> bytes:
        """Content bytes with the declared encoding undone.

        Raises:
            ValueError: If the content does not match its encoding
        """
        if self.encoding == Encoding.HEX:
            return bytes.fromhex(self.content.decode("ascii"))
        if self.encoding == Encoding.BASE64:
            return base64.b64decode(self.content, validate=True)
        return self.content


def decode_attachment(payload: bytes) -> Optional[AttachmentRecord]:
    """Decode a B payload.

    Returns:
        AttachmentRecord, or None if fewer than three fields are present
    """
    try:
        chunks = parse_chunks(payload)
    except ScriptError as e:
        logger.debug("B payload not recognized: %s", e)
        return None
    if len(chunks) < 3:
        return None

    return AttachmentRecord(
        content=chunks[0].data,
        media_type=as_text(chunks[1].data),
        encoding=parse_encoding(as_text(chunks[2].data)),
        filename=as_text(chunks[3].data) if len(chunks) > 3 else None,
    )
