"""CLI commands for chathost."""

import asyncio
import uuid

import typer
from rich.console import Console
from rich.table import Table

from chathost import __version__, __logo__

app = typer.Typer(
    name="chathost",
    help=f"{__logo__} chathost - chat automation host",
    no_args_is_help=True,
)

console = Console()

DEFAULT_CONSOLE_JID = "console@s.whatsapp.net"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chathost v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chathost - chat automation host."""
    pass


@app.command()
def version():
    """Show the chathost version."""
    console.print(f"{__logo__} chathost v{__version__}")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard(
    owner: str = typer.Option("", "--owner", "-o", help="Owner JID or phone number"),
):
    """Create the default configuration file."""
    from chathost.config.loader import get_config_path, save_config
    from chathost.config.schema import Config
    from chathost.errors import InvalidIdentityError
    from chathost.security.jid import normalize_jid

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    if owner:
        try:
            config.access.owner = normalize_jid(owner)
        except InvalidIdentityError as e:
            console.print(f"[red]Error: {e.message}[/red]")
            raise typer.Exit(1)

    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} chathost is ready!")
    console.print("\nNext steps:")
    if not owner:
        console.print(f"  1. Set [cyan]access.owner[/cyan] in [cyan]{config_path}[/cyan]")
    console.print("  Try it locally: [cyan]chathost console[/cyan]")


# ============================================================================
# Commands
# ============================================================================


@app.command()
def commands():
    """List the registered commands."""
    from chathost.channels.console import ConsoleTransport
    from chathost.config.loader import load_config
    from chathost.host import ChatHost

    config = load_config()
    host = ChatHost(ConsoleTransport(console), config=config)

    table = Table(title="Commands")
    table.add_column("Command", style="cyan")
    table.add_column("Category", style="green")
    table.add_column("Aliases", style="yellow")
    table.add_column("Cooldown")
    table.add_column("Owner only")
    table.add_column("Description")

    for command in host.registry.list_commands():
        table.add_row(
            f"{config.commands.prefix}{command.name}",
            command.category,
            ", ".join([*command.names[1:], *command.aliases]),
            f"{command.cooldown:g}s" if command.cooldown else "-",
            "✓" if command.sudo_only else "",
            command.description,
        )

    console.print(table)


# ============================================================================
# Console
# ============================================================================


@app.command("console")
def console_chat(
    sender: str = typer.Option("", "--sender", "-s", help="Sender JID (defaults to the owner)"),
    chat: str = typer.Option("", "--chat", "-c", help="Chat JID (defaults to the sender)"),
    group: bool = typer.Option(False, "--group", "-g", help="Treat the chat as a group"),
):
    """Send messages to the host from the terminal."""
    from chathost.bus.events import InboundEvent
    from chathost.channels.console import ConsoleTransport
    from chathost.config.loader import load_config
    from chathost.errors import ChatHostError
    from chathost.host import ChatHost

    config = load_config()
    host = ChatHost(ConsoleTransport(console), config=config)
    if host.state.owner is None:
        host.set_owner(DEFAULT_CONSOLE_JID)

    sender_jid = sender or host.state.owner
    chat_jid = chat or sender_jid

    console.print(f"{__logo__} Console mode as [cyan]{sender_jid}[/cyan] (Ctrl+C to exit)\n")

    async def run_interactive():
        await host.start()
        try:
            while True:
                try:
                    text = await asyncio.to_thread(console.input, "[bold blue]You:[/bold blue] ")
                except (KeyboardInterrupt, EOFError):
                    console.print("\nGoodbye!")
                    break
                if not text.strip():
                    continue

                event = InboundEvent(
                    message_id=uuid.uuid4().hex[:12],
                    chat=chat_jid,
                    sender=sender_jid,
                    text=text,
                    is_group=group,
                )
                try:
                    handled = await host.handle(event)
                except ChatHostError as e:
                    console.print(f"[red]{e.code}: {e.message}[/red]")
                    continue
                if not handled:
                    console.print("[dim](ignored)[/dim]")
        finally:
            await host.stop()

    asyncio.run(run_interactive())
