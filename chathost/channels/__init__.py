"""Transport boundary and the bundled console transport."""

from chathost.channels.base import Archiver, MediaFetcher, Responder, Transport
from chathost.channels.console import ConsoleTransport

__all__ = ["Archiver", "MediaFetcher", "Responder", "Transport", "ConsoleTransport"]
