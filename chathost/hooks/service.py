"""
Hooks service for chathost.

Re-emits host events to:
- In-process callbacks
- Webhooks (HTTP delivery with retries)
"""

import asyncio
import json
import time
import uuid
from enum import Enum
from typing import Any, Callable, Awaitable
from dataclasses import dataclass, field

import httpx
from loguru import logger

from chathost.utils.tasks import BackgroundTasks


class HookAction(str, Enum):
    """Types of hook actions."""
    WEBHOOK = "webhook"
    CALLBACK = "callback"


class HookEvent(str, Enum):
    """Types of events that can trigger hooks."""
    MESSAGE_RECEIVED = "message.received"
    ACCESS_DENIED = "access.denied"
    COMMAND_EXECUTED = "command.executed"
    COMMAND_FAILED = "command.failed"
    STAGE_FAILED = "stage.failed"
    GAME_INPUT = "game.input"
    MEDIA_DOWNLOADED = "media.downloaded"
    MEDIA_FAILED = "media.failed"
    ARCHIVE_FAILED = "archive.failed"
    PERMISSION_GRANTED = "permission.granted"
    PERMISSION_REVOKED = "permission.revoked"


@dataclass
class Hook:
    """A hook configuration."""
    id: str
    event: str  # Event type to trigger on, or "*"
    action: HookAction
    target: str  # URL or callback name
    filter: dict[str, Any] = field(default_factory=dict)  # Payload filtering
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def matches_event(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Check if this hook should trigger for an event."""
        if not self.enabled:
            return False

        if self.event != event_type and self.event != "*":
            return False

        for key, expected in self.filter.items():
            actual = payload.get(key)
            if isinstance(expected, list):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False

        return True


@dataclass
class HookResult:
    """Result of hook execution."""
    hook_id: str
    success: bool
    response: str = ""
    error: str = ""
    duration_ms: float = 0.0


HookCallback = Callable[[dict[str, Any]], Awaitable[Any]]


class HookService:
    """
    Manages and executes hooks.

    ``trigger`` awaits delivery; ``emit`` schedules it in the background so
    the message pipeline never waits on a webhook.
    """

    def __init__(
        self,
        webhook_timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.webhook_timeout = webhook_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._hooks: dict[str, Hook] = {}
        self._callbacks: dict[str, HookCallback] = {}

        self._client = client
        self._background = BackgroundTasks()

        # Stats
        self._trigger_count = 0
        self._success_count = 0
        self._error_count = 0

    def add_hook(self, hook: Hook) -> None:
        """Add a hook."""
        self._hooks[hook.id] = hook
        logger.debug(f"Hook added: {hook.id} -> {hook.event}")

    def remove_hook(self, hook_id: str) -> bool:
        """Remove a hook."""
        if hook_id in self._hooks:
            del self._hooks[hook_id]
            return True
        return False

    def list_hooks(self, event: str | None = None) -> list[Hook]:
        """List hooks, optionally filtered by event."""
        hooks = list(self._hooks.values())
        if event:
            hooks = [h for h in hooks if h.event == event or h.event == "*"]
        return hooks

    def register_callback(self, name: str, callback: HookCallback) -> None:
        """Register a callback function for callback-type hooks."""
        self._callbacks[name] = callback

    def on(self, event: HookEvent | str, callback: HookCallback) -> Hook:
        """Register a callback and a hook that routes an event to it."""
        event_type = event.value if isinstance(event, HookEvent) else event
        name = f"{event_type}:{uuid.uuid4().hex[:8]}"
        self.register_callback(name, callback)
        hook = Hook(id=name, event=event_type, action=HookAction.CALLBACK, target=name)
        self.add_hook(hook)
        return hook

    def add_webhook(
        self,
        url: str,
        event: str = "*",
        headers: dict[str, str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> Hook:
        hook = Hook(
            id=f"webhook:{uuid.uuid4().hex[:8]}",
            event=event,
            action=HookAction.WEBHOOK,
            target=url,
            filter=filter or {},
            metadata={"headers": headers or {}},
        )
        self.add_hook(hook)
        return hook

    def emit(self, event: HookEvent | str, payload: dict[str, Any]) -> None:
        """Trigger hooks for an event without waiting for delivery."""
        event_type = event.value if isinstance(event, HookEvent) else event
        if not any(h.matches_event(event_type, payload) for h in self._hooks.values()):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {event_type} event")
            return
        self._background.spawn(self.trigger(event_type, payload), f"hook:{event_type}")

    async def trigger(
        self,
        event: HookEvent | str,
        payload: dict[str, Any],
    ) -> list[HookResult]:
        """
        Trigger all hooks matching an event.

        Args:
            event: Event type.
            payload: Event payload.

        Returns:
            List of results from triggered hooks.
        """
        event_type = event.value if isinstance(event, HookEvent) else event
        self._trigger_count += 1

        matching_hooks = [
            h for h in self._hooks.values()
            if h.matches_event(event_type, payload)
        ]
        if not matching_hooks:
            return []

        logger.debug(f"Event {event_type} matched {len(matching_hooks)} hooks")

        results = await asyncio.gather(*[
            self._execute_hook(hook, event_type, payload)
            for hook in matching_hooks
        ])

        for result in results:
            if result.success:
                self._success_count += 1
            else:
                self._error_count += 1
                logger.warning(f"Hook {result.hook_id} failed for {event_type}: {result.error}")

        return list(results)

    async def _execute_hook(
        self,
        hook: Hook,
        event: str,
        payload: dict[str, Any],
    ) -> HookResult:
        """Execute a single hook."""
        start = time.time()

        try:
            if hook.action == HookAction.WEBHOOK:
                result = await self._execute_webhook(hook, event, payload)
            elif hook.action == HookAction.CALLBACK:
                result = await self._execute_callback(hook, event, payload)
            else:
                raise ValueError(f"Unknown action: {hook.action}")

            return HookResult(
                hook_id=hook.id,
                success=True,
                response=str(result) if result else "",
                duration_ms=(time.time() - start) * 1000,
            )

        except Exception as e:
            return HookResult(
                hook_id=hook.id,
                success=False,
                error=str(e),
                duration_ms=(time.time() - start) * 1000,
            )

    async def _execute_webhook(
        self,
        hook: Hook,
        event: str,
        payload: dict[str, Any],
    ) -> str:
        """POST the event to a webhook URL."""
        data = {
            "event": event,
            "payload": json.loads(json.dumps(payload, default=str)),
            "hook_id": hook.id,
        }
        headers = hook.metadata.get("headers", {})

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.webhook_timeout)

        for attempt in range(self.max_retries):
            try:
                response = await self._client.post(hook.target, json=data, headers=headers)
                response.raise_for_status()
                return response.text
            except httpx.HTTPError:
                if attempt == self.max_retries - 1:
                    raise
                await asyncio.sleep(self.retry_delay)

        return ""

    async def _execute_callback(
        self,
        hook: Hook,
        event: str,
        payload: dict[str, Any],
    ) -> Any:
        """Execute a callback hook."""
        callback = self._callbacks.get(hook.target)
        if not callback:
            raise ValueError(f"Callback not found: {hook.target}")

        return await callback({"event": event, "payload": payload, "hook": hook})

    async def drain(self) -> None:
        """Wait for emitted events to be delivered."""
        await self._background.drain()

    async def close(self) -> None:
        """Deliver pending events and close the HTTP client."""
        await self._background.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {
            "hook_count": len(self._hooks),
            "trigger_count": self._trigger_count,
            "success_count": self._success_count,
            "error_count": self._error_count,
            "pending": self._background.pending,
        }
