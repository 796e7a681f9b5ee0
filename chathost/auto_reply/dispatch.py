"""
Command dispatcher for chathost.

Runs one resolved command with:
- Access resolution and command gates
- Per-user cooldowns
- Dispatch-level middleware
- Failure isolation (generic user message, error re-raised for operators)
"""

import inspect
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from chathost.auto_reply.commands import Command, CommandRegistry
from chathost.bus.events import InboundEvent
from chathost.cache.store import ExpiringStore
from chathost.channels.base import Responder, Transport
from chathost.errors import CommandExecutionError
from chathost.hooks.service import HookEvent, HookService
from chathost.security.jid import try_normalize_jid
from chathost.security.policy import (
    AccessDecision,
    AccessResolver,
    ReasonCode,
    denial_message,
    effective_sender,
)
from chathost.utils.tasks import KeyedLocks


@dataclass
class DispatchConfig:
    """Configuration for the dispatcher."""
    failure_message: str = "❌ Something went wrong while running this command."
    blocked_message: str = "⛔ This command is not available right now."
    cooldown_message: str = "⏰ Please wait {remaining}s before using this command again."
    success_reaction: str = "✅"


@dataclass
class CommandContext:
    """Everything a handler gets for one invocation."""
    event: InboundEvent
    command: Command
    args: list[str]
    sender: str  # Normalized effective sender
    decision: AccessDecision
    responder: Responder
    services: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def chat(self) -> str:
        return self.event.chat

    @property
    def is_group(self) -> bool:
        return self.event.is_group

    @property
    def args_str(self) -> str:
        return " ".join(self.args)

    def service(self, name: str) -> Any:
        """Get a host service (``host``, ``state``, ``registry``...)."""
        return self.services[name]

    async def reply(self, text: str, **kwargs: Any) -> None:
        await self.responder.reply(text, **kwargs)

    async def react(self, emoji: str) -> None:
        await self.responder.react(emoji)


# Middleware returns False to block dispatch; anything else continues.
DispatchMiddleware = Callable[[CommandContext], Awaitable[bool | None] | bool | None]


class CommandDispatcher:
    """
    Dispatches commands to their handlers.

    Flow:
    1. Look up the command
    2. Resolve access, then check group/private/admin gates
    3. Check cooldown
    4. Run middleware
    5. Invoke the handler
    6. Record cooldown once the handler returns
    """

    def __init__(
        self,
        registry: CommandRegistry,
        resolver: AccessResolver,
        cooldowns: ExpiringStore,
        transport: Transport,
        config: DispatchConfig | None = None,
        hooks: HookService | None = None,
        services: dict[str, Any] | None = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.cooldowns = cooldowns
        self.transport = transport
        self.config = config or DispatchConfig()
        self.hooks = hooks
        self.services = services if services is not None else {}

        self._middleware: list[DispatchMiddleware] = []
        self._locks = KeyedLocks()

        # Stats
        self._executed_count = 0
        self._denied_count = 0
        self._cooldown_count = 0
        self._blocked_count = 0
        self._error_count = 0

    def use(self, middleware: DispatchMiddleware) -> None:
        """Append a dispatch middleware."""
        if not callable(middleware):
            raise TypeError("Middleware must be callable")
        self._middleware.append(middleware)
        logger.debug(f"Added dispatch middleware: {getattr(middleware, '__name__', type(middleware).__name__)}")

    @staticmethod
    def cooldown_key(sender: str, command_name: str) -> str:
        return f"cooldown:{sender}:{command_name}"

    async def execute(
        self,
        event: InboundEvent,
        command_name: str,
        args: list[str] | None = None,
        responder: Responder | None = None,
    ) -> bool:
        """
        Execute a command for an event.

        Args:
            event: The inbound event.
            command_name: Any name or alias of the command.
            args: Command arguments.
            responder: Responder already used for this event, if any.

        Returns:
            False if no such command exists, True otherwise (including
            refusals, which are answered with a message).

        Raises:
            CommandExecutionError: If the handler raised. Transport and
                middleware errors propagate unchanged.
        """
        command = self.registry.get(command_name)
        if command is None:
            return False

        responder = responder or Responder(self.transport, event)

        decision = self.resolver.resolve_event(event, command)
        if not decision.allowed:
            self._denied_count += 1
            logger.info(f"Command {command.name} denied for {event.sender}: {decision.reason.value}")
            await responder.reply(denial_message(decision.reason))
            self._emit(HookEvent.ACCESS_DENIED, event, command=command.name, reason=decision.reason.value)
            return True

        gate = self._check_gates(event, command, decision)
        if gate is not None:
            self._denied_count += 1
            await responder.reply(denial_message(gate))
            self._emit(HookEvent.ACCESS_DENIED, event, command=command.name, reason=gate.value)
            return True

        sender = try_normalize_jid(effective_sender(event, self.resolver.state)) or event.sender
        ctx = CommandContext(
            event=event,
            command=command,
            args=list(args or []),
            sender=sender,
            decision=decision,
            responder=responder,
            services=self.services,
        )

        if command.cooldown > 0:
            key = self.cooldown_key(sender, command.name)
            async with self._locks.hold(key):
                return await self._run(ctx, key)
        return await self._run(ctx, None)

    def _check_gates(
        self,
        event: InboundEvent,
        command: Command,
        decision: AccessDecision,
    ) -> ReasonCode | None:
        if command.group_only and not event.is_group:
            return ReasonCode.GROUP_ONLY
        if command.private_only and event.is_group:
            return ReasonCode.PRIVATE_ONLY
        if command.admin_only and event.is_group:
            if decision.reason != ReasonCode.OWNER and not event.sender_is_admin:
                return ReasonCode.ADMIN_ONLY
        return None

    async def _run(self, ctx: CommandContext, cooldown_key: str | None) -> bool:
        command = ctx.command
        responder = ctx.responder

        if cooldown_key is not None and self.cooldowns.has(cooldown_key):
            self._cooldown_count += 1
            remaining = max(1, math.ceil(self.cooldowns.remaining(cooldown_key) or 0))
            await responder.reply(self.config.cooldown_message.format(remaining=remaining))
            return True

        for middleware in self._middleware:
            result = middleware(ctx)
            if inspect.isawaitable(result):
                result = await result
            if result is False:
                self._blocked_count += 1
                logger.debug(f"Command {command.name} blocked by middleware")
                if not responder.replied:
                    await responder.reply(self.config.blocked_message)
                return True

        logger.info(f"Executing command: {command.name} by {ctx.sender}")
        start = time.monotonic()

        try:
            output = command.handler(ctx)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            self._error_count += 1
            logger.error(f"Command {command.name} failed: {e}")
            try:
                await responder.reply(self.config.failure_message)
            except Exception as reply_error:
                logger.error(f"Failed to send failure message: {reply_error}")
            self._emit(HookEvent.COMMAND_FAILED, ctx.event, command=command.name, error=type(e).__name__)
            raise CommandExecutionError(command.name, e) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        self._executed_count += 1
        logger.debug(f"Command {command.name} executed in {elapsed_ms:.0f}ms")

        # The handler ran, so the cooldown holds even if the reply fails
        if cooldown_key is not None:
            self.cooldowns.set(
                cooldown_key,
                self.cooldowns.clock() + command.cooldown,
                ttl=command.cooldown,
            )

        if isinstance(output, str) and output:
            await responder.reply(output)
        elif not responder.replied and not responder.reactions:
            await responder.try_react(self.config.success_reaction)

        self._emit(HookEvent.COMMAND_EXECUTED, ctx.event, command=command.name, duration_ms=round(elapsed_ms, 1))
        return True

    def _emit(self, event_type: HookEvent, event: InboundEvent, **payload: Any) -> None:
        if self.hooks is None:
            return
        self.hooks.emit(event_type, {
            "chat": event.chat,
            "sender": event.sender,
            "message_id": event.message_id,
            **payload,
        })

    def get_stats(self) -> dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "executed_count": self._executed_count,
            "denied_count": self._denied_count,
            "cooldown_count": self._cooldown_count,
            "blocked_count": self._blocked_count,
            "error_count": self._error_count,
            "middleware": len(self._middleware),
        }
