"""
Pipeline orchestrator for chathost.

Runs capture, then error recovery, then the registered stages in order,
then hands the extracted command to the dispatcher.
"""

from typing import Any, Iterable

from loguru import logger

from chathost.auto_reply.dispatch import CommandDispatcher
from chathost.bus.events import InboundEvent
from chathost.channels.base import Responder, Transport
from chathost.errors import CommandExecutionError, RecoveryError, StageError
from chathost.hooks.service import HookEvent
from chathost.pipeline.context import PipelineContext
from chathost.pipeline.stages import CaptureStage, ErrorRecoveryStage, Stage
from chathost.security.policy import ReasonCode


class Pipeline:
    """
    Ordered message pipeline.

    A stage that raises is recorded on the context and handed to the
    recovery stage; the remaining stages still run unless recovery stops
    the context. A failure inside recovery aborts the run with
    RecoveryError. Dispatch failures are logged and counted, never raised,
    so one event cannot stop a batch.
    """

    def __init__(
        self,
        capture: CaptureStage,
        recovery: ErrorRecoveryStage,
        dispatcher: CommandDispatcher,
        transport: Transport,
        stages: Iterable[Stage] = (),
        reply_unknown: bool = True,
        unknown_message: str = "❓ Unknown command: {prefix}{name}",
    ):
        self.capture = capture
        self.recovery = recovery
        self.dispatcher = dispatcher
        self.transport = transport
        self.reply_unknown = reply_unknown
        self.unknown_message = unknown_message
        self._stages: list[Stage] = []
        for stage in stages:
            self.add_stage(stage)

        # Stats
        self._processed = 0
        self._stopped = 0
        self._dispatched = 0
        self._dispatch_errors = 0

    def add_stage(self, stage: Stage) -> None:
        """Append a stage after the ones already registered."""
        if any(s.name == stage.name for s in self.stages):
            raise ValueError(f"Duplicate stage name: {stage.name}")
        self._stages.append(stage)
        logger.debug(f"Added pipeline stage: {stage.name}")

    @property
    def stages(self) -> list[Stage]:
        """All stages in execution order."""
        return [self.capture, self.recovery, *self._stages]

    def get_stage(self, name: str) -> Stage | None:
        return next((s for s in self.stages if s.name == name), None)

    async def run(self, ctx: PipelineContext) -> PipelineContext:
        """Run every stage over the context."""
        for stage in self.stages:
            if ctx.stopped:
                break
            try:
                await stage.process(ctx)
            except Exception as e:
                if stage is self.recovery:
                    raise RecoveryError(e, ctx.failed_stage) from e

                ctx.failed_stage = stage.name
                ctx.error = e
                try:
                    await self.recovery.recover(ctx, StageError(stage.name, e))
                except Exception as recovery_error:
                    raise RecoveryError(recovery_error, stage.name) from recovery_error
        return ctx

    async def handle(self, event: InboundEvent) -> bool:
        """
        Process one event end to end.

        Returns:
            True if the event was routed to a command or a game, False if it
            was ignored.
        """
        self._processed += 1
        ctx = PipelineContext(event=event, responder=Responder(self.transport, event))
        await self.run(ctx)

        if ctx.stopped:
            self._stopped += 1
            logger.debug(f"Pipeline stopped for {event.message_id}: {ctx.stop_reason}")
            return False

        if ctx.command is None:
            return bool(ctx.metadata.get("game_input"))

        return await self._dispatch(ctx)

    async def handle_batch(self, events: Iterable[InboundEvent]) -> list[bool]:
        """Process events strictly in order."""
        results = []
        for event in events:
            results.append(await self.handle(event))
        return results

    async def _dispatch(self, ctx: PipelineContext) -> bool:
        command = ctx.command
        found = True
        success = True
        try:
            found = await self.dispatcher.execute(
                ctx.event,
                command.name,
                command.arguments,
                responder=ctx.responder,
            )
            if not found:
                success = False
                await self._reply_unknown(ctx)
        except CommandExecutionError as e:
            self._dispatch_errors += 1
            success = False
            logger.opt(exception=e.cause).error(f"Dispatch of {e.command} failed for {ctx.event.message_id}")
        except Exception as e:
            # Transport or middleware failures
            self._dispatch_errors += 1
            success = False
            logger.opt(exception=e).error(f"Dispatch of {command.name} failed for {ctx.event.message_id}: {e}")
            self._emit_failure(ctx, e)

        if found:
            self._dispatched += 1

        if ctx.metadata.get("loading_reaction"):
            await ctx.responder.try_react("✅" if success else "❌")

        return found

    def _emit_failure(self, ctx: PipelineContext, error: Exception) -> None:
        hooks = self.dispatcher.hooks
        if hooks is None:
            return
        hooks.emit(HookEvent.COMMAND_FAILED, {
            "chat": ctx.event.chat,
            "sender": ctx.event.sender,
            "message_id": ctx.event.message_id,
            "command": ctx.command.name,
            "error": type(error).__name__,
        })

    async def _reply_unknown(self, ctx: PipelineContext) -> None:
        if not self.reply_unknown or ctx.decision is None:
            return
        if ctx.decision.reason != ReasonCode.OWNER:
            return
        await ctx.responder.reply(self.unknown_message.format(
            prefix=ctx.command.prefix,
            name=ctx.command.name,
        ))

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics, including per-stage counters."""
        return {
            "processed": self._processed,
            "stopped": self._stopped,
            "dispatched": self._dispatched,
            "dispatch_errors": self._dispatch_errors,
            "stages": {s.name: s.get_stats() for s in self.stages},
        }
