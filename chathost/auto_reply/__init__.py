"""
Command handling for chathost.

Provides:
- Command registration and parsing
- Dispatch with access checks, cooldowns and middleware
- Per-user rate limiting
- Built-in administrative commands
"""

from chathost.auto_reply.commands import (
    Command,
    CommandRegistry,
    CommandSpec,
    ParsedCommand,
    parse_command,
)
from chathost.auto_reply.dispatch import (
    CommandContext,
    CommandDispatcher,
    DispatchConfig,
)
from chathost.auto_reply.ratelimit import (
    RateLimiter,
    RateLimitConfig,
)

__all__ = [
    # Commands
    "Command",
    "CommandRegistry",
    "CommandSpec",
    "ParsedCommand",
    "parse_command",
    # Dispatch
    "CommandContext",
    "CommandDispatcher",
    "DispatchConfig",
    # Rate limiting
    "RateLimiter",
    "RateLimitConfig",
]
