"""
Per-user rate limiting for chathost commands.

Sliding-window counter installed as a dispatch middleware, so it runs
after access and cooldown checks and before the handler.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from chathost.auto_reply.dispatch import CommandContext
from chathost.security.policy import ReasonCode


@dataclass
class RateLimitConfig:
    """Configuration for the rate limiter."""
    max_commands: int = 10  # Max commands per window
    window_seconds: float = 60.0
    owner_exempt: bool = True
    message: str = "⏰ Rate limit exceeded. Please slow down."


class RateLimiter:
    """
    Sliding-window rate limiter keyed by sender.

    Use as ``dispatcher.use(RateLimiter(...))``.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self.clock = clock

        # sender -> [timestamps]
        self._windows: dict[str, list[float]] = {}
        self._last_prune = clock()

        # Stats
        self._total_checked = 0
        self._total_limited = 0

    async def __call__(self, ctx: CommandContext) -> bool:
        if self.config.owner_exempt and ctx.decision.reason == ReasonCode.OWNER:
            return True

        self._total_checked += 1
        if self.check(ctx.sender):
            return True

        self._total_limited += 1
        logger.info(f"Rate limit exceeded for {ctx.sender} on {ctx.command.name}")
        await ctx.reply(self.config.message)
        return False

    def check(self, sender: str) -> bool:
        """Record an attempt. Returns False when sender is over the limit."""
        now = self.clock()
        cutoff = now - self.config.window_seconds

        # Once per window, forget senders with no recent attempts
        if now - self._last_prune >= self.config.window_seconds:
            self._prune(cutoff)
            self._last_prune = now

        window = [ts for ts in self._windows.get(sender, ()) if ts > cutoff]
        if len(window) >= self.config.max_commands:
            self._windows[sender] = window
            return False

        window.append(now)
        self._windows[sender] = window
        return True

    def _prune(self, cutoff: float) -> None:
        stale = [s for s, window in self._windows.items() if not window or window[-1] <= cutoff]
        for sender in stale:
            del self._windows[sender]
        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} idle senders")

    def get_stats(self) -> dict[str, Any]:
        """Get limiter statistics."""
        return {
            "total_checked": self._total_checked,
            "total_limited": self._total_limited,
            "tracked_senders": len(self._windows),
        }
