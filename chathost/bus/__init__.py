"""Event types exchanged with the transport."""

from chathost.bus.events import Attachment, InboundEvent, OutboundMessage

__all__ = ["Attachment", "InboundEvent", "OutboundMessage"]
