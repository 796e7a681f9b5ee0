"""Per-event pipeline state."""

from dataclasses import dataclass, field
from typing import Any

from chathost.auto_reply.commands import ParsedCommand
from chathost.bus.events import InboundEvent
from chathost.channels.base import Responder
from chathost.security.policy import AccessDecision


@dataclass
class PipelineContext:
    """Mutable record threaded through every stage of one run."""
    event: InboundEvent
    responder: Responder
    stopped: bool = False
    stop_reason: str = ""
    failed_stage: str | None = None
    error: BaseException | None = None
    command: ParsedCommand | None = None  # Set by the access filter
    decision: AccessDecision | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def stop(self, reason: str) -> None:
        """Skip the remaining stages and dispatch."""
        self.stopped = True
        self.stop_reason = reason
