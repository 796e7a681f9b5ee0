"""
Transport boundary for chathost.

The messaging client, the archive and the media vault live outside this
package. These protocols are the only parts of them the host relies on.
"""

from typing import Protocol, runtime_checkable

from loguru import logger

from chathost.bus.events import InboundEvent, OutboundMessage


@runtime_checkable
class Transport(Protocol):
    """Outbound operations of a messaging client."""

    async def send_message(self, message: OutboundMessage) -> None:
        ...

    async def react(self, chat: str, message_id: str, emoji: str) -> None:
        ...


@runtime_checkable
class Archiver(Protocol):
    """Records every inbound event."""

    async def store_archive(self, event: InboundEvent) -> None:
        ...


@runtime_checkable
class MediaFetcher(Protocol):
    """Downloads the attachment of an event."""

    async def fetch_media(self, event: InboundEvent) -> str | None:
        ...


class Responder:
    """
    Reply and react capabilities bound to the chat an event came from.

    Counts what it sends so callers can tell whether the user already
    got an answer.
    """

    def __init__(self, transport: Transport, event: InboundEvent):
        self.transport = transport
        self.event = event
        self.replies = 0
        self.reactions = 0

    @property
    def replied(self) -> bool:
        return self.replies > 0

    async def reply(
        self,
        text: str,
        quote: bool = True,
        mentions: list[str] | None = None,
    ) -> None:
        """Send text to the originating chat."""
        await self.transport.send_message(OutboundMessage(
            chat=self.event.chat,
            content=text,
            reply_to=self.event.message_id if quote else None,
            mentions=list(mentions or []),
        ))
        self.replies += 1

    async def react(self, emoji: str) -> None:
        """React to the originating message."""
        await self.transport.react(self.event.chat, self.event.message_id, emoji)
        self.reactions += 1

    async def try_react(self, emoji: str) -> bool:
        """React, logging instead of raising on transport errors."""
        try:
            await self.react(emoji)
            return True
        except Exception as e:
            logger.warning(f"Reaction {emoji} failed in {self.event.chat}: {e}")
            return False
