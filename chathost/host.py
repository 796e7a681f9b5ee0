"""
ChatHost: wires permission state, cooldown store, registry, dispatcher,
pipeline, hooks and plugins, and exposes the administrative surface.
"""

import time
from typing import Any, Callable, Iterable, Mapping

from loguru import logger

from chathost.auto_reply.builtin import register_builtin_commands
from chathost.auto_reply.commands import Command, CommandRegistry, CommandSpec
from chathost.auto_reply.dispatch import CommandDispatcher, DispatchConfig
from chathost.auto_reply.ratelimit import RateLimitConfig, RateLimiter
from chathost.bus.events import InboundEvent
from chathost.cache.store import ExpiringStore
from chathost.channels.base import Archiver, MediaFetcher, Transport
from chathost.config.schema import Config
from chathost.hooks.service import HookEvent, HookService
from chathost.pipeline import (
    AccessFilterStage,
    AllowedCommandsStage,
    CaptureStage,
    ErrorRecoveryStage,
    GameStateStage,
    LoadingReactionStage,
    MediaFetchStage,
    Pipeline,
)
from chathost.plugins import PluginLoader
from chathost.security.jid import normalize_jid
from chathost.security.policy import WILDCARD, AccessResolver, GameSession, PermissionState
from chathost.utils.tasks import BackgroundTasks


class ChatHost:
    """
    The chat-automation host.

    Usage:
        host = ChatHost(transport, config=config)
        host.register_command({"command": "ping", "handler": ping})
        await host.start()
        await host.handle(event)
    """

    def __init__(
        self,
        transport: Transport,
        config: Config | None = None,
        archiver: Archiver | None = None,
        media_fetcher: MediaFetcher | None = None,
        hooks: HookService | None = None,
        state: PermissionState | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.transport = transport

        self.state = state or PermissionState()
        if self.config.access.owner and self.state.owner is None:
            self.state.set_owner(self.config.access.owner)
        for jid, commands in self.config.access.grants.items():
            for command in commands:
                self.state.grant(jid, command)

        self.hooks = hooks or HookService(
            webhook_timeout=self.config.hooks.timeout,
            max_retries=self.config.hooks.max_retries,
        )
        for webhook in self.config.hooks.webhooks:
            self.hooks.add_webhook(webhook.url, event=webhook.event, headers=webhook.headers)

        self.background = BackgroundTasks()
        self.cooldowns = ExpiringStore(
            sweep_interval=self.config.cooldowns.sweep_interval,
            clock=clock,
        )
        self.registry = CommandRegistry()
        self.resolver = AccessResolver(self.state)

        commands_config = self.config.commands
        self.dispatcher = CommandDispatcher(
            registry=self.registry,
            resolver=self.resolver,
            cooldowns=self.cooldowns,
            transport=transport,
            config=DispatchConfig(
                failure_message=commands_config.failure_message,
                blocked_message=commands_config.blocked_message,
                cooldown_message=commands_config.cooldown_message,
            ),
            hooks=self.hooks,
            services={
                "host": self,
                "state": self.state,
                "registry": self.registry,
                "cooldowns": self.cooldowns,
            },
        )

        self.rate_limiter: RateLimiter | None = None
        if self.config.rate_limit.enabled:
            self.rate_limiter = RateLimiter(
                RateLimitConfig(
                    max_commands=self.config.rate_limit.max_commands,
                    window_seconds=self.config.rate_limit.window_seconds,
                    owner_exempt=self.config.rate_limit.owner_exempt,
                ),
                clock=clock,
            )
            self.dispatcher.use(self.rate_limiter)

        features = self.config.features
        self.pipeline = Pipeline(
            capture=CaptureStage(archiver, self.background, self.hooks),
            recovery=ErrorRecoveryStage(
                self.state,
                transport,
                self.hooks,
                notify_owner=self.config.recovery.notify_owner,
                fail_closed_stages=self.config.recovery.fail_closed_stages,
                max_tracked_chats=self.config.recovery.max_tracked_chats,
            ),
            dispatcher=self.dispatcher,
            transport=transport,
            stages=[
                AccessFilterStage(self.registry, self.resolver, prefix=self.prefix),
                GameStateStage(self.state, self.hooks, enabled=features.games),
                AllowedCommandsStage(self.registry, self.state),
                LoadingReactionStage(self.registry, enabled=features.loading_reaction),
                MediaFetchStage(media_fetcher, self.background, self.hooks, enabled=features.media_download),
            ],
            reply_unknown=commands_config.reply_unknown,
            unknown_message=commands_config.unknown_message,
        )

        if commands_config.builtins:
            register_builtin_commands(self)

        self.plugins = PluginLoader(self.registry, self.config.plugins.directory or None)
        if self.config.plugins.directory and self.config.plugins.autoload:
            self.plugins.load_all()

    @property
    def prefix(self) -> str:
        return self.config.commands.prefix

    # Lifecycle

    async def start(self) -> None:
        """Start background maintenance."""
        await self.cooldowns.start()
        logger.info(f"ChatHost started with {len(self.registry)} commands")

    async def drain(self) -> None:
        """Wait for background archive, media and hook work."""
        await self.background.drain()
        await self.hooks.drain()

    async def stop(self, timeout: float | None = 10.0) -> None:
        """
        Finish background work and stop maintenance.

        Background tasks still running after ``timeout`` seconds are cancelled.
        """
        await self.background.drain(timeout=timeout)
        if self.background.pending:
            logger.warning(f"Cancelling {self.background.pending} background tasks")
            await self.background.cancel_all()
        await self.hooks.drain()
        await self.cooldowns.stop()
        await self.hooks.close()
        logger.info("ChatHost stopped")

    # Inbound

    async def handle(self, event: InboundEvent) -> bool:
        """Process one inbound event. Returns True if it was handled."""
        return await self.pipeline.handle(event)

    async def handle_batch(self, events: Iterable[InboundEvent]) -> list[bool]:
        """Process events strictly in order."""
        return await self.pipeline.handle_batch(events)

    # Administration

    def register_command(self, spec: CommandSpec | Mapping[str, Any]) -> Command:
        return self.registry.register(spec)

    def unregister_command(self, name: str) -> bool:
        return self.registry.unregister(name)

    def list_commands(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.registry.list_commands()]

    def set_owner(self, jid: str) -> str:
        owner = self.state.set_owner(jid)
        logger.info(f"Owner set to {owner}")
        return owner

    def _canonical_command(self, command: str) -> str:
        """Resolve an alias to its command name; unknown names pass through lowercased."""
        name = command.strip().lower()
        if name == WILDCARD:
            return name
        return self.registry.canonical_name(name) or name

    def grant_access(self, jid: str, command: str) -> bool:
        """Allow jid to use command ("*" for all). Returns True if the grant is new."""
        command = self._canonical_command(command)
        added = self.state.grant(jid, command)
        if added:
            identity = normalize_jid(jid)
            logger.info(f"Granted {command} to {identity}")
            self.hooks.emit(HookEvent.PERMISSION_GRANTED, {"jid": identity, "command": command})
        return added

    def revoke_access(self, jid: str, command: str) -> bool:
        """Remove a grant. Returns True if one was removed."""
        command = self._canonical_command(command)
        removed = self.state.revoke(jid, command)
        if removed:
            identity = normalize_jid(jid)
            logger.info(f"Revoked {command} from {identity}")
            self.hooks.emit(HookEvent.PERMISSION_REVOKED, {"jid": identity, "command": command})
        return removed

    def start_game(
        self,
        chat: str,
        game_type: str,
        players: list[str],
        data: dict[str, Any] | None = None,
    ) -> GameSession:
        session = self.state.start_game(chat, game_type, players, data)
        logger.info(f"Started {session.type} in {chat} with {len(session.players)} players")
        return session

    def end_game(self, chat: str) -> bool:
        ended = self.state.end_game(chat)
        if ended:
            logger.info(f"Ended game in {chat}")
        return ended

    def get_stats(self) -> dict[str, Any]:
        """Get statistics for every component."""
        return {
            "pipeline": self.pipeline.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "registry": self.registry.get_stats(),
            "permissions": self.state.get_stats(),
            "cooldowns": self.cooldowns.get_stats(),
            "rate_limit": self.rate_limiter.get_stats() if self.rate_limiter else None,
            "hooks": self.hooks.get_stats(),
            "background": self.background.get_stats(),
            "plugins": self.plugins.get_stats(),
        }
