"""
Pipeline stages for chathost.

Each stage reads and mutates a PipelineContext. Stage order:
capture, error_recovery, access_filter, game_state, allowed_commands,
loading_reaction, media_fetch.
"""

import time
from collections import OrderedDict
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from chathost.auto_reply.commands import CommandRegistry, parse_command
from chathost.bus.events import InboundEvent, OutboundMessage
from chathost.channels.base import Archiver, MediaFetcher, Transport
from chathost.errors import StageError
from chathost.hooks.service import HookEvent, HookService
from chathost.pipeline.context import PipelineContext
from chathost.security.jid import try_normalize_jid
from chathost.security.policy import (
    AccessResolver,
    PermissionState,
    ReasonCode,
    effective_sender,
    is_valid_move,
)
from chathost.utils.tasks import BackgroundTasks


class Stage(ABC):
    """A named step of the message pipeline."""

    name: str = "stage"

    @abstractmethod
    async def process(self, ctx: PipelineContext) -> None:
        """Process the context. Call ``ctx.stop()`` to end the run."""
        pass

    def get_stats(self) -> dict[str, Any]:
        return {}


def _emit(hooks: HookService | None, event_type: HookEvent, event: InboundEvent, **payload: Any) -> None:
    if hooks is None:
        return
    hooks.emit(event_type, {
        "chat": event.chat,
        "sender": event.sender,
        "message_id": event.message_id,
        **payload,
    })


class CaptureStage(Stage):
    """Archives every inbound event in the background."""

    name = "capture"

    def __init__(
        self,
        archiver: Archiver | None,
        background: BackgroundTasks,
        hooks: HookService | None = None,
    ):
        self.archiver = archiver
        self.background = background
        self.hooks = hooks
        self._captured = 0
        self._failed = 0

    async def process(self, ctx: PipelineContext) -> None:
        event = ctx.event
        self._captured += 1
        logger.debug(f"Received {event.summary()}")
        _emit(self.hooks, HookEvent.MESSAGE_RECEIVED, event, is_group=event.is_group)

        if self.archiver is None:
            ctx.metadata["archive_queued"] = False
            return

        self.background.spawn(self._archive(event), f"archive:{event.message_id}")
        ctx.metadata["archive_queued"] = True

    async def _archive(self, event: InboundEvent) -> None:
        try:
            await self.archiver.store_archive(event)
        except Exception as e:
            self._failed += 1
            _emit(self.hooks, HookEvent.ARCHIVE_FAILED, event, error=type(e).__name__)
            raise

    def get_stats(self) -> dict[str, Any]:
        return {"captured": self._captured, "archive_failures": self._failed}


class ErrorRecoveryStage(Stage):
    """
    Handles failures of the stages that run after it.

    Keeps per-chat error counts, reports the failure, clears the loading
    reaction, and stops the run when the failed stage is fail-closed.
    """

    name = "error_recovery"

    def __init__(
        self,
        state: PermissionState,
        transport: Transport,
        hooks: HookService | None = None,
        notify_owner: bool = False,
        fail_closed_stages: list[str] | None = None,
        max_tracked_chats: int = 500,
    ):
        self.state = state
        self.transport = transport
        self.hooks = hooks
        self.notify_owner = notify_owner
        self.fail_closed_stages = set(
            fail_closed_stages if fail_closed_stages is not None else ["access_filter"]
        )
        self.max_tracked_chats = max_tracked_chats

        # Least recently failing chats are evicted first
        self._error_counts: OrderedDict[str, int] = OrderedDict()
        self._last_errors: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._total_errors = 0

    async def process(self, ctx: PipelineContext) -> None:
        ctx.metadata["received_at"] = time.time()

    async def recover(self, ctx: PipelineContext, error: StageError) -> None:
        """Called by the pipeline when a stage raises."""
        event = ctx.event
        self._record(event.chat, error)

        logger.opt(exception=error.cause).error(
            f"Stage {error.stage} failed for message {event.message_id} in {event.chat}"
        )
        _emit(self.hooks, HookEvent.STAGE_FAILED, event, stage=error.stage, error=type(error.cause).__name__)

        if self.notify_owner and self.state.owner:
            await self.transport.send_message(OutboundMessage(
                chat=self.state.owner,
                content=f"⚠️ Stage {error.stage} failed in {event.chat}: {type(error.cause).__name__}",
            ))

        if ctx.metadata.get("loading_reaction"):
            await ctx.responder.try_react("")
            ctx.metadata["loading_reaction"] = False

        if error.stage in self.fail_closed_stages:
            ctx.stop(f"{error.stage}_failed")

    def _record(self, chat: str, error: StageError) -> None:
        self._total_errors += 1
        self._error_counts[chat] = self._error_counts.pop(chat, 0) + 1
        self._last_errors.pop(chat, None)
        self._last_errors[chat] = {
            "stage": error.stage,
            "error": str(error.cause),
            "type": type(error.cause).__name__,
            "timestamp": time.time(),
        }
        while len(self._error_counts) > self.max_tracked_chats:
            oldest, _ = self._error_counts.popitem(last=False)
            self._last_errors.pop(oldest, None)

    def error_count(self, chat: str) -> int:
        return self._error_counts.get(chat, 0)

    def last_error(self, chat: str) -> dict[str, Any] | None:
        return self._last_errors.get(chat)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_errors": self._total_errors,
            "chats_with_errors": len(self._error_counts),
        }


class AccessFilterStage(Stage):
    """
    Extracts the command and resolves access.

    Denied events without a registered command end here silently. Events
    with a registered command go on so the dispatcher can explain the
    refusal.
    """

    name = "access_filter"

    def __init__(self, registry: CommandRegistry, resolver: AccessResolver, prefix: str = "."):
        self.registry = registry
        self.resolver = resolver
        self.prefix = prefix
        self._allowed = 0
        self._blocked = 0

    async def process(self, ctx: PipelineContext) -> None:
        ctx.command = parse_command(ctx.event.text, self.prefix)
        command = self.registry.get(ctx.command.name) if ctx.command else None

        ctx.decision = self.resolver.resolve_event(ctx.event, command)
        if ctx.decision.allowed:
            self._allowed += 1
            return

        self._blocked += 1
        if command is None:
            logger.debug(f"Ignoring message {ctx.event.message_id} from {ctx.event.sender}: {ctx.decision.reason.value}")
            ctx.stop(ctx.decision.reason.value)

    def get_stats(self) -> dict[str, Any]:
        return {"allowed": self._allowed, "blocked": self._blocked}


class GameStateStage(Stage):
    """Routes moves from players of the chat's active game."""

    name = "game_state"

    def __init__(self, state: PermissionState, hooks: HookService | None = None, enabled: bool = True):
        self.state = state
        self.hooks = hooks
        self.enabled = enabled
        self._moves = 0

    async def process(self, ctx: PipelineContext) -> None:
        if not self.enabled or ctx.command is not None:
            return

        game = self.state.get_game(ctx.event.chat)
        if game is None:
            return

        sender = try_normalize_jid(effective_sender(ctx.event, self.state))
        if sender not in game.players:
            return

        if not is_valid_move(game.type, ctx.event.text):
            ctx.stop("invalid_move")
            return

        self._moves += 1
        move = ctx.event.body.lower()
        ctx.metadata["game_input"] = True
        ctx.metadata["game_type"] = game.type
        ctx.metadata["game_move"] = move
        _emit(self.hooks, HookEvent.GAME_INPUT, ctx.event, game_type=game.type, move=move)

    def get_stats(self) -> dict[str, Any]:
        return {"moves": self._moves}


class AllowedCommandsStage(Stage):
    """Re-checks explicit grants right before dispatch."""

    name = "allowed_commands"

    def __init__(self, registry: CommandRegistry, state: PermissionState):
        self.registry = registry
        self.state = state

    async def process(self, ctx: PipelineContext) -> None:
        if ctx.command is None or ctx.decision is None:
            return
        if ctx.decision.reason != ReasonCode.EXPLICITLY_ALLOWED:
            return

        command = self.registry.get(ctx.command.name)
        sender = effective_sender(ctx.event, self.state)
        if command is None or not self.state.is_command_allowed(sender, command.name):
            logger.info(f"Grant for {ctx.command.name} no longer held by {sender}")
            ctx.stop("grant_revoked")


class LoadingReactionStage(Stage):
    """Marks owner commands as in progress."""

    name = "loading_reaction"

    def __init__(self, registry: CommandRegistry, enabled: bool = True, emoji: str = "⏳"):
        self.registry = registry
        self.enabled = enabled
        self.emoji = emoji

    async def process(self, ctx: PipelineContext) -> None:
        if not self.enabled or ctx.command is None or ctx.decision is None:
            return
        if ctx.decision.reason != ReasonCode.OWNER or not self.registry.has(ctx.command.name):
            return
        if await ctx.responder.try_react(self.emoji):
            ctx.metadata["loading_reaction"] = True


class MediaFetchStage(Stage):
    """Downloads attachments in the background."""

    name = "media_fetch"

    def __init__(
        self,
        fetcher: MediaFetcher | None,
        background: BackgroundTasks,
        hooks: HookService | None = None,
        enabled: bool = False,
    ):
        self.fetcher = fetcher
        self.background = background
        self.hooks = hooks
        self.enabled = enabled
        self._downloaded = 0
        self._failed = 0

    async def process(self, ctx: PipelineContext) -> None:
        if not self.enabled or self.fetcher is None or not ctx.event.has_media:
            return
        self.background.spawn(self._fetch(ctx.event), f"media:{ctx.event.message_id}")
        ctx.metadata["media_queued"] = True

    async def _fetch(self, event: InboundEvent) -> None:
        try:
            path = await self.fetcher.fetch_media(event)
        except Exception as e:
            self._failed += 1
            _emit(self.hooks, HookEvent.MEDIA_FAILED, event, error=type(e).__name__)
            raise

        if path is None:
            logger.debug(f"No media stored for {event.message_id}")
            return

        self._downloaded += 1
        logger.info(f"Media for {event.message_id} saved to {path}")
        _emit(self.hooks, HookEvent.MEDIA_DOWNLOADED, event, path=str(path), kind=event.attachment.kind)

    def get_stats(self) -> dict[str, Any]:
        return {"downloaded": self._downloaded, "failed": self._failed}
