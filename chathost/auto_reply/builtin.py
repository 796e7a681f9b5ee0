"""
Built-in administrative commands.

All of them are owner-only except ``help``, which follows the normal
grant rules.
"""

from typing import TYPE_CHECKING

from chathost.auto_reply.dispatch import CommandContext
from chathost.errors import InvalidIdentityError, PluginError
from chathost.security.jid import normalize_jid
from chathost.security.policy import GAME_MOVE_VALIDATORS, WILDCARD

if TYPE_CHECKING:
    from chathost.host import ChatHost


def _host(ctx: CommandContext) -> "ChatHost":
    return ctx.service("host")


def _target_and_command(ctx: CommandContext) -> tuple[str, str] | None:
    """
    Parse ``<jid> <command>``, or ``<command>`` alone in a private chat
    where the chat partner is the target.
    """
    if len(ctx.args) >= 2:
        return ctx.args[0], ctx.args[1]
    if len(ctx.args) == 1 and not ctx.is_group:
        return ctx.chat, ctx.args[0]
    return None


def _check_command_name(ctx: CommandContext, name: str) -> str | None:
    name = name.lower()
    if name == WILDCARD:
        return name
    return _host(ctx).registry.canonical_name(name)


async def allow_command(ctx: CommandContext) -> str:
    parsed = _target_and_command(ctx)
    if parsed is None:
        return f"Usage: {ctx.command.usage}"

    target, name = parsed
    command = _check_command_name(ctx, name)
    if command is None:
        return f"❓ Unknown command: {name}"

    try:
        added = _host(ctx).grant_access(target, command)
    except InvalidIdentityError:
        return f"⚠️ Invalid user: {target}"

    jid = normalize_jid(target)
    if not added:
        return f"ℹ️ {jid} can already use {command}"
    return f"✅ {jid} can now use {command}"


async def disallow_command(ctx: CommandContext) -> str:
    parsed = _target_and_command(ctx)
    if parsed is None:
        return f"Usage: {ctx.command.usage}"

    target, name = parsed
    command = _check_command_name(ctx, name) or name.lower()

    try:
        removed = _host(ctx).revoke_access(target, command)
    except InvalidIdentityError:
        return f"⚠️ Invalid user: {target}"

    jid = normalize_jid(target)
    if not removed:
        return f"ℹ️ {jid} had no access to {command}"
    return f"🚫 {jid} can no longer use {command}"


async def permissions_command(ctx: CommandContext) -> str:
    state = _host(ctx).state
    if ctx.args:
        try:
            jid = normalize_jid(ctx.args[0])
        except InvalidIdentityError:
            return f"⚠️ Invalid user: {ctx.args[0]}"
        commands = sorted(state.allowed_commands(jid))
        if not commands:
            return f"{jid} has no permissions"
        return f"{jid}: {', '.join(commands)}"

    grants = state.all_grants()
    if not grants:
        return "No permissions granted"
    lines = ["🔐 Permissions:"]
    for jid, commands in sorted(grants.items()):
        lines.append(f"• {jid}: {', '.join(commands)}")
    return "\n".join(lines)


async def startgame_command(ctx: CommandContext) -> str:
    if not ctx.args:
        return f"Usage: {ctx.command.usage}"

    game_type = ctx.args[0].lower()
    if game_type not in GAME_MOVE_VALIDATORS:
        return f"❓ Unknown game: {game_type}. Available: {', '.join(sorted(GAME_MOVE_VALIDATORS))}"

    players = ctx.args[1:] or [ctx.sender]
    try:
        session = _host(ctx).start_game(ctx.chat, game_type, players)
    except InvalidIdentityError as e:
        return f"⚠️ {e.message}"
    return f"🎮 {session.type} started with {len(session.players)} player(s)"


async def endgame_command(ctx: CommandContext) -> str:
    if _host(ctx).end_game(ctx.chat):
        return "🏁 Game ended"
    return "No active game in this chat"


async def stats_command(ctx: CommandContext) -> str:
    stats = _host(ctx).get_stats()
    dispatcher = stats["dispatcher"]
    pipeline = stats["pipeline"]
    permissions = stats["permissions"]
    return "\n".join([
        "📊 Stats",
        f"Messages: {pipeline['processed']}",
        f"Commands run: {dispatcher['executed_count']}",
        f"Denied: {dispatcher['denied_count']}",
        f"Errors: {dispatcher['error_count']}",
        f"Registered commands: {stats['registry']['total_commands']}",
        f"Users with grants: {permissions['allowed_users']}",
        f"Active games: {permissions['active_games']}",
    ])


async def plugins_command(ctx: CommandContext) -> str:
    plugins = _host(ctx).plugins.list_plugins()
    if not plugins:
        return "No plugins loaded"
    lines = ["🧩 Plugins:"]
    for plugin in plugins:
        lines.append(f"• {plugin['name']}: {', '.join(plugin['commands']) or '-'}")
    return "\n".join(lines)


async def reload_command(ctx: CommandContext) -> str:
    if not ctx.args:
        return f"Usage: {ctx.command.usage}"
    try:
        plugin = _host(ctx).plugins.reload(ctx.args[0])
    except PluginError as e:
        return f"⚠️ {e.message}"
    return f"♻️ Reloaded {plugin.name} ({len(plugin.commands)} commands)"


async def help_command(ctx: CommandContext) -> str:
    host = _host(ctx)
    return host.registry.get_help(ctx.args[0] if ctx.args else "", prefix=host.prefix)


BUILTIN_COMMANDS = [
    {
        "command": "allow",
        "handler": allow_command,
        "category": "owner",
        "description": "Allow a user to use a command",
        "usage": ".allow <user> <command|*>",
        "sudo_only": True,
    },
    {
        "command": ["disallow", "revoke"],
        "handler": disallow_command,
        "category": "owner",
        "description": "Remove a user's access to a command",
        "usage": ".disallow <user> <command|*>",
        "sudo_only": True,
    },
    {
        "command": "permissions",
        "aliases": ["perms"],
        "handler": permissions_command,
        "category": "owner",
        "description": "List granted permissions",
        "usage": ".permissions [user]",
        "sudo_only": True,
    },
    {
        "command": "startgame",
        "handler": startgame_command,
        "category": "owner",
        "description": "Start a game in this chat",
        "usage": ".startgame <type> [players...]",
        "sudo_only": True,
    },
    {
        "command": "endgame",
        "handler": endgame_command,
        "category": "owner",
        "description": "End the game in this chat",
        "sudo_only": True,
    },
    {
        "command": "stats",
        "handler": stats_command,
        "category": "owner",
        "description": "Show host statistics",
        "sudo_only": True,
    },
    {
        "command": "plugins",
        "handler": plugins_command,
        "category": "owner",
        "description": "List loaded plugins",
        "sudo_only": True,
    },
    {
        "command": "reload",
        "handler": reload_command,
        "category": "owner",
        "description": "Reload a plugin from disk",
        "usage": ".reload <plugin>",
        "sudo_only": True,
    },
    {
        "command": "help",
        "aliases": ["menu"],
        "handler": help_command,
        "category": "general",
        "description": "List commands",
        "usage": ".help [command]",
    },
]


def register_builtin_commands(host: "ChatHost") -> None:
    """Register the built-in commands on a host."""
    for spec in BUILTIN_COMMANDS:
        host.register_command({**spec, "plugin": "builtin"})
