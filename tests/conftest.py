"""
Pytest configuration and shared fixtures for chathost tests.
"""

import itertools

import pytest

from chathost.bus.events import InboundEvent, OutboundMessage
from chathost.config.schema import Config
from chathost.host import ChatHost


OWNER = "owner@s.whatsapp.net"
USER = "12345@s.whatsapp.net"
OTHER = "67890@s.whatsapp.net"
GROUP = "120363000000@g.us"


class FakeTransport:
    """Records everything the host sends; the first ``fail_sends`` sends raise."""

    def __init__(self, fail_sends: int = 0):
        self.messages: list[OutboundMessage] = []
        self.reactions: list[tuple[str, str, str]] = []
        self.fail_sends = fail_sends

    async def send_message(self, message: OutboundMessage) -> None:
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise ConnectionError("socket closed")
        self.messages.append(message)

    async def react(self, chat: str, message_id: str, emoji: str) -> None:
        self.reactions.append((chat, message_id, emoji))

    @property
    def texts(self) -> list[str]:
        return [m.content for m in self.messages]


class FakeArchiver:
    """Records archived events."""

    def __init__(self, fail: bool = False):
        self.archived: list[InboundEvent] = []
        self.fail = fail

    async def store_archive(self, event: InboundEvent) -> None:
        if self.fail:
            raise RuntimeError("archive unavailable")
        self.archived.append(event)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_ids = itertools.count(1)


def make_event(
    text: str | None = None,
    sender: str = USER,
    chat: str | None = None,
    **kwargs,
) -> InboundEvent:
    """Build an inbound event; the chat defaults to the sender's private chat."""
    return InboundEvent(
        message_id=kwargs.pop("message_id", f"msg{next(_ids)}"),
        chat=chat or sender,
        sender=sender,
        text=text,
        **kwargs,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def archiver():
    return FakeArchiver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    config = Config()
    config.access.owner = OWNER
    return config


@pytest.fixture
def host(transport, archiver, config, clock):
    """A host with the built-in commands and a manual clock."""
    return ChatHost(transport, config=config, archiver=archiver, clock=clock)
