"""Console transport: prints outbound traffic with rich."""

from rich.console import Console

from chathost.bus.events import OutboundMessage


class ConsoleTransport:
    """Transport that writes replies and reactions to a terminal."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self.sent: list[OutboundMessage] = []

    async def send_message(self, message: OutboundMessage) -> None:
        self.sent.append(message)
        quote = f" [dim](re {message.reply_to})[/dim]" if message.reply_to else ""
        self.console.print(f"[bold green]→ {message.chat}[/bold green]{quote}")
        self.console.print(message.content, markup=False)

    async def react(self, chat: str, message_id: str, emoji: str) -> None:
        if emoji:
            self.console.print(f"[dim]{emoji} on {message_id}[/dim]")
        else:
            self.console.print(f"[dim]reaction cleared on {message_id}[/dim]")
