"""
Command registration and parsing for chathost.

Supports:
- Validated command specs (malformed specs fail at registration)
- Multiple names and aliases per command, all keys pointing at one record
- Categories and permission gates
- Prefix-based command extraction from message text
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from chathost.errors import RegistrationError


# Handlers may be plain functions or coroutines; the dispatcher awaits both.
CommandHandler = Callable[..., Awaitable[str | None] | str | None]


@dataclass
class ParsedCommand:
    """A command extracted from message text."""
    name: str
    arguments: list[str] = field(default_factory=list)
    raw: str = ""
    prefix: str = "."

    @property
    def arg(self) -> str:
        """Get first argument or empty string."""
        return self.arguments[0] if self.arguments else ""

    @property
    def args_str(self) -> str:
        """Get all arguments as a single string."""
        return " ".join(self.arguments)


def parse_command(text: str | None, prefix: str = ".") -> ParsedCommand | None:
    """
    Parse a command from message text.

    Examples:
        .ping -> ParsedCommand(name="ping")
        .allow 12345@s.whatsapp.net ping -> ParsedCommand(name="allow", arguments=[...])

    Args:
        text: Message text.
        prefix: Command prefix.

    Returns:
        ParsedCommand or None if the text is not a command.
    """
    if not text:
        return None
    text = text.strip()
    if not prefix or not text.startswith(prefix):
        return None

    parts = text[len(prefix):].split()
    if not parts:
        return None

    return ParsedCommand(
        name=parts[0].lower(),
        arguments=parts[1:],
        raw=text,
        prefix=prefix,
    )


class CommandSpec(BaseModel):
    """Registration input for a command."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    command: list[str]
    handler: Callable[..., Any]
    aliases: list[str] = Field(default_factory=list)
    category: str = "general"
    description: str = "No description"
    usage: str = ""
    cooldown: float = Field(default=0.0, ge=0)
    sudo_only: bool = False
    group_only: bool = False
    private_only: bool = False
    admin_only: bool = False
    plugin: str = "unknown"

    @model_validator(mode="before")
    @classmethod
    def _accept_execute_key(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "execute" in data and "handler" not in data:
            data = dict(data)
            data["handler"] = data.pop("execute")
        return data

    @field_validator("command", mode="before")
    @classmethod
    def _wrap_single_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("command", "aliases")
    @classmethod
    def _normalize_names(cls, names: list[str]) -> list[str]:
        normalized = []
        for name in names:
            clean = name.strip().lower()
            if not clean:
                raise ValueError("command names must be non-empty")
            if any(ch.isspace() for ch in clean):
                raise ValueError(f"command name contains whitespace: {name!r}")
            normalized.append(clean)
        return normalized

    @field_validator("command")
    @classmethod
    def _require_name(cls, names: list[str]) -> list[str]:
        if not names:
            raise ValueError("at least one command name is required")
        return names

    @model_validator(mode="after")
    def _check_conflicts(self) -> "CommandSpec":
        keys = [*self.command, *self.aliases]
        if len(keys) != len(set(keys)):
            raise ValueError("command names and aliases must be unique")
        if self.group_only and self.private_only:
            raise ValueError("a command cannot be both group_only and private_only")
        return self


@dataclass(eq=False)
class Command:
    """A registered command. Every name and alias key references this one object."""
    name: str
    names: list[str]
    aliases: list[str]
    handler: CommandHandler
    category: str = "general"
    description: str = "No description"
    usage: str = ""
    cooldown: float = 0.0
    sudo_only: bool = False
    group_only: bool = False
    private_only: bool = False
    admin_only: bool = False
    plugin: str = "unknown"
    registered_at: float = field(default_factory=time.time)

    @property
    def keys(self) -> list[str]:
        """Every registry key for this command."""
        return [*self.names, *self.aliases]

    @classmethod
    def from_spec(cls, spec: CommandSpec) -> "Command":
        return cls(
            name=spec.command[0],
            names=list(spec.command),
            aliases=list(spec.aliases),
            handler=spec.handler,
            category=spec.category,
            description=spec.description,
            usage=spec.usage,
            cooldown=spec.cooldown,
            sudo_only=spec.sudo_only,
            group_only=spec.group_only,
            private_only=spec.private_only,
            admin_only=spec.admin_only,
            plugin=spec.plugin,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "names": self.names,
            "aliases": self.aliases,
            "category": self.category,
            "description": self.description,
            "usage": self.usage,
            "cooldown": self.cooldown,
            "sudo_only": self.sudo_only,
            "group_only": self.group_only,
            "private_only": self.private_only,
            "admin_only": self.admin_only,
            "plugin": self.plugin,
        }


class CommandRegistry:
    """
    Registry for commands.

    Supports:
    - Multiple names and aliases per command
    - Categories
    - Atomic unregistration of every key
    """

    def __init__(self):
        self._commands: dict[str, Command] = {}
        self._aliases: dict[str, str] = {}  # secondary key -> primary name

    def register(self, spec: CommandSpec | Mapping[str, Any]) -> Command:
        """
        Register a command.

        Args:
            spec: A CommandSpec or a mapping with the same fields
                (``execute`` is accepted as a synonym for ``handler``).

        Returns:
            The registered Command.

        Raises:
            RegistrationError: If the spec is malformed or a name is taken.
        """
        if not isinstance(spec, CommandSpec):
            try:
                spec = CommandSpec.model_validate(spec)
            except ValidationError as e:
                logger.error(f"Command registration rejected: {e}")
                raise RegistrationError(f"Invalid command spec: {e}") from e

        command = Command.from_spec(spec)
        taken = [key for key in command.keys if key in self._commands]
        if taken:
            raise RegistrationError(
                f"Command name already registered: {', '.join(taken)}",
                {"names": taken},
            )

        for key in command.keys:
            self._commands[key] = command
            if key != command.name:
                self._aliases[key] = command.name

        logger.debug(f"Registered command: {command.name} ({len(command.keys)} keys)")
        return command

    def unregister(self, name: str) -> bool:
        """Remove a command and every one of its keys."""
        command = self.get(name)
        if command is None:
            return False

        for key in command.keys:
            self._commands.pop(key, None)
            self._aliases.pop(key, None)

        logger.debug(f"Unregistered command: {command.name}")
        return True

    def get(self, name: str) -> Command | None:
        """Get a command by any of its names (case-insensitive)."""
        return self._commands.get(name.strip().lower())

    def has(self, name: str) -> bool:
        return name.strip().lower() in self._commands

    def canonical_name(self, name: str) -> str | None:
        command = self.get(name)
        return command.name if command else None

    def list_commands(self) -> list[Command]:
        """List registered commands, one entry per command."""
        unique = {key: cmd for key, cmd in self._commands.items() if key == cmd.name}
        return [unique[name] for name in sorted(unique)]

    def get_by_category(self, category: str) -> list[Command]:
        return [c for c in self.list_commands() if c.category == category]

    def categories(self) -> list[str]:
        return sorted({c.category for c in self.list_commands()})

    def get_help(self, name: str = "", prefix: str = ".") -> str:
        """Get help text for a command or all commands."""
        if name:
            command = self.get(name)
            if command is None:
                return f"No help for: {name}"
            lines = [f"{prefix}{command.name} - {command.description}"]
            if command.usage:
                lines.append(f"Usage: {command.usage}")
            if command.aliases or len(command.names) > 1:
                others = [*command.names[1:], *command.aliases]
                lines.append(f"Aliases: {', '.join(others)}")
            return "\n".join(lines)

        lines = ["Available commands:"]
        for category in self.categories():
            lines.append(f"\n[{category}]")
            for command in self.get_by_category(category):
                lines.append(f"  {prefix}{command.name} - {command.description}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.list_commands())

    def get_stats(self) -> dict[str, Any]:
        per_category: dict[str, int] = {}
        for command in self.list_commands():
            per_category[command.category] = per_category.get(command.category, 0) + 1
        return {
            "total_commands": len(self),
            "total_aliases": len(self._aliases),
            "categories": per_category,
        }
