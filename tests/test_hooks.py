"""
Tests for the hook service.
"""

import json

import httpx
import pytest

from chathost.hooks.service import Hook, HookAction, HookEvent, HookService


class TestHookMatching:
    def test_event_and_wildcard(self):
        hook = Hook(id="h", event="command.failed", action=HookAction.CALLBACK, target="cb")
        assert hook.matches_event("command.failed", {})
        assert not hook.matches_event("command.executed", {})

        wildcard = Hook(id="w", event="*", action=HookAction.CALLBACK, target="cb")
        assert wildcard.matches_event("anything", {})

    def test_payload_filter(self):
        hook = Hook(
            id="h",
            event="*",
            action=HookAction.CALLBACK,
            target="cb",
            filter={"command": ["ping", "pong"]},
        )
        assert hook.matches_event("command.executed", {"command": "ping"})
        assert not hook.matches_event("command.executed", {"command": "help"})

    def test_disabled(self):
        hook = Hook(id="h", event="*", action=HookAction.CALLBACK, target="cb", enabled=False)
        assert not hook.matches_event("x", {})


class TestHookService:
    @pytest.mark.asyncio
    async def test_callback(self):
        service = HookService()
        received = []

        async def callback(data):
            received.append(data)
            return "ok"

        service.on(HookEvent.COMMAND_EXECUTED, callback)
        results = await service.trigger(HookEvent.COMMAND_EXECUTED, {"command": "ping"})

        assert results[0].success
        assert results[0].response == "ok"
        assert received[0]["event"] == "command.executed"
        assert received[0]["payload"] == {"command": "ping"}

    @pytest.mark.asyncio
    async def test_missing_callback_is_a_failed_result(self):
        service = HookService()
        service.add_hook(Hook(id="h", event="*", action=HookAction.CALLBACK, target="nope"))
        results = await service.trigger("x", {})
        assert not results[0].success
        assert "Callback not found" in results[0].error
        assert service.get_stats()["error_count"] == 1

    @pytest.mark.asyncio
    async def test_webhook_delivery(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="received")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = HookService(client=client)
        service.add_webhook("https://example.com/hook", event="access.denied", headers={"X-Token": "t"})

        results = await service.trigger(HookEvent.ACCESS_DENIED, {"reason": "owner_only"})
        await service.close()

        assert results[0].success
        assert results[0].response == "received"
        body = json.loads(requests[0].content)
        assert body["event"] == "access.denied"
        assert body["payload"] == {"reason": "owner_only"}
        assert requests[0].headers["X-Token"] == "t"

    @pytest.mark.asyncio
    async def test_webhook_retries_then_fails(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(500)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = HookService(client=client, max_retries=3, retry_delay=0)
        service.add_webhook("https://example.com/hook")

        results = await service.trigger("command.failed", {})
        await service.close()

        assert attempts == 3
        assert not results[0].success

    @pytest.mark.asyncio
    async def test_emit_delivers_in_background(self):
        service = HookService()
        received = []

        async def callback(data):
            received.append(data["payload"])

        service.on("stage.failed", callback)
        service.emit(HookEvent.STAGE_FAILED, {"stage": "game_state"})
        assert received == []

        await service.drain()
        assert received == [{"stage": "game_state"}]

    def test_emit_without_loop_is_dropped(self):
        service = HookService()

        async def callback(data):
            pass

        service.on("*", callback)
        service.emit("command.executed", {})
        assert service.get_stats()["trigger_count"] == 0

    def test_remove_hook(self):
        service = HookService()
        hook = service.add_webhook("https://example.com/hook")
        assert service.remove_hook(hook.id) is True
        assert service.remove_hook(hook.id) is False
