"""Event types for the message bus."""

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Attachment:
    """Media descriptor attached to an inbound message."""
    kind: str  # image, video, audio, document, sticker
    mimetype: str = ""
    size: int = 0
    file_name: str = ""
    url: str | None = None


@dataclass(frozen=True)
class InboundEvent:
    """One message received from the transport."""
    message_id: str
    chat: str  # Chat JID (group or direct)
    sender: str  # Participant JID
    text: str | None = None
    attachment: Attachment | None = None
    from_self: bool = False
    is_group: bool = False
    timestamp: float = field(default_factory=time.time)
    sender_is_admin: bool = False  # Group admin flag, supplied by the transport
    push_name: str = ""

    @property
    def body(self) -> str:
        """Text with surrounding whitespace removed, empty when absent."""
        return (self.text or "").strip()

    @property
    def has_media(self) -> bool:
        return self.attachment is not None

    def summary(self) -> dict[str, Any]:
        """Short loggable view of the event."""
        return {
            "id": self.message_id,
            "chat": self.chat,
            "sender": self.sender,
            "group": self.is_group,
            "text": self.body[:100] if self.text else "[media]" if self.attachment else "",
        }


@dataclass
class OutboundMessage:
    """Message to send back through the transport."""
    chat: str
    content: str
    reply_to: str | None = None
    mentions: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
