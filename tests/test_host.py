"""
End-to-end tests for ChatHost and the built-in commands.
"""

import asyncio
from unittest.mock import Mock

import pytest

from chathost.host import ChatHost
from chathost.security.policy import ReasonCode, denial_message

from conftest import GROUP, OTHER, OWNER, USER, make_event


class TestScenarios:
    @pytest.mark.asyncio
    async def test_owner_grants_then_user_runs(self, host, transport):
        handler = Mock(return_value="pong")
        host.register_command({"command": "ping", "handler": handler})

        assert await host.handle(make_event(".allow 12345@x ping", sender=OWNER)) is True
        assert transport.texts[-1] == "✅ 12345@x can now use ping"

        assert await host.handle(make_event(".ping", sender="12345@x")) is True
        handler.assert_called_once()
        assert transport.texts[-1] == "pong"

    @pytest.mark.asyncio
    async def test_non_owner_gets_denial_for_owner_command(self, host, transport):
        handler = Mock(return_value="restarted")
        host.register_command({"command": "restart", "sudo_only": True, "handler": handler})
        host.grant_access(USER, "*")

        assert await host.handle(make_event(".restart")) is True
        handler.assert_not_called()
        assert transport.texts == [denial_message(ReasonCode.OWNER_ONLY)]

    @pytest.mark.asyncio
    async def test_stage_failure_still_archives(self, host, archiver, transport):
        handler = Mock(return_value="pong")
        host.register_command({"command": "ping", "handler": handler})

        host.pipeline.get_stage("game_state").process = Mock(side_effect=RuntimeError("boom"))
        event = make_event(".ping", sender=OWNER)

        assert await host.handle(event) is True
        await host.drain()
        assert archiver.archived == [event]
        handler.assert_called_once()
        assert host.pipeline.recovery.error_count(event.chat) == 1

    @pytest.mark.asyncio
    async def test_from_self_acts_as_owner(self, host, transport):
        host.register_command({"command": "restart", "sudo_only": True, "handler": lambda ctx: "ok"})
        assert await host.handle(make_event(".restart", sender=USER, from_self=True)) is True
        assert transport.texts == ["ok"]


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_runs_in_order(self, host, transport):
        seen = []
        host.register_command({"command": "echo", "handler": lambda ctx: seen.append(ctx.args_str)})

        events = [make_event(f".echo {i}", sender=OWNER) for i in range(5)]
        results = await host.handle_batch(events)

        assert results == [True] * 5
        assert seen == ["0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_batch(self, host, transport):
        def broken(ctx):
            raise RuntimeError("boom")

        host.register_command({"command": "broken", "handler": broken})
        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})

        results = await host.handle_batch([
            make_event(".broken", sender=OWNER),
            make_event(".ping", sender=OWNER),
        ])
        assert results == [True, True]
        assert transport.texts[-1] == "pong"

    @pytest.mark.asyncio
    async def test_send_failure_does_not_stop_batch(self, host, transport):
        handler = Mock(return_value="pong")
        host.register_command({"command": "ping", "handler": handler})
        failed = []

        async def listener(data):
            failed.append(data["payload"]["error"])

        host.hooks.on("command.failed", listener)
        transport.fail_sends = 1

        results = await host.handle_batch([
            make_event(".ping", sender=OWNER),
            make_event(".ping", sender=OWNER),
        ])
        await host.drain()

        assert results == [True, True]
        assert handler.call_count == 2
        assert transport.texts == ["pong"]
        assert host.pipeline.get_stats()["dispatch_errors"] == 1
        assert failed == ["ConnectionError"]
        assert [r[2] for r in transport.reactions] == ["⏳", "❌", "⏳", "✅"]

    @pytest.mark.asyncio
    async def test_middleware_failure_does_not_stop_batch(self, host, transport):
        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})
        host.dispatcher.use(Mock(side_effect=[RuntimeError("middleware down"), None]))

        results = await host.handle_batch([
            make_event(".ping", sender=OWNER),
            make_event(".ping", sender=OWNER),
        ])

        assert results == [True, True]
        assert transport.texts == ["pong"]


class TestBuiltinCommands:
    @pytest.mark.asyncio
    async def test_allow_in_private_chat_targets_partner(self, host, transport):
        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})
        await host.handle(make_event(".allow ping", sender=OWNER, chat=USER, from_self=True))
        assert host.state.is_command_allowed(USER, "ping")

    @pytest.mark.asyncio
    async def test_allow_resolves_alias_and_wildcard(self, host):
        host.register_command({"command": "ping", "aliases": ["p"], "handler": lambda ctx: "pong"})
        await host.handle(make_event(".allow 12345 p", sender=OWNER))
        await host.handle(make_event(".allow 67890 *", sender=OWNER))
        assert host.state.allowed_commands(USER) == frozenset({"ping"})
        assert host.state.allowed_commands(OTHER) == frozenset({"*"})

    @pytest.mark.asyncio
    async def test_allow_rejects_unknown_command_and_bad_user(self, host, transport):
        await host.handle(make_event(".allow 12345 nothing", sender=OWNER))
        assert transport.texts[-1] == "❓ Unknown command: nothing"

        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})
        await host.handle(make_event(".allow not@a@jid ping", sender=OWNER))
        assert transport.texts[-1].startswith("⚠️ Invalid user")
        assert host.state.all_grants() == {}

    @pytest.mark.asyncio
    async def test_allow_usage_in_group(self, host, transport):
        await host.handle(make_event(".allow ping", sender=OWNER, chat=GROUP, is_group=True))
        assert transport.texts[-1].startswith("Usage:")

    @pytest.mark.asyncio
    async def test_disallow_and_permissions(self, host, transport):
        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})
        host.grant_access(USER, "ping")

        await host.handle(make_event(".permissions", sender=OWNER))
        assert f"{USER}: ping" in transport.texts[-1]

        await host.handle(make_event(f".disallow {USER} ping", sender=OWNER))
        assert transport.texts[-1] == f"🚫 {USER} can no longer use ping"
        assert not host.state.is_command_allowed(USER, "ping")

        await host.handle(make_event(".permissions", sender=OWNER))
        assert transport.texts[-1] == "No permissions granted"

    @pytest.mark.asyncio
    async def test_games(self, host, transport):
        await host.handle(make_event(f".startgame tictactoe {USER} {OTHER}", sender=OWNER, chat=GROUP, is_group=True))
        assert transport.texts[-1] == "🎮 tictactoe started with 2 player(s)"
        assert host.state.is_game_player(GROUP, OTHER)

        await host.handle(make_event(".startgame chess", sender=OWNER, chat=GROUP, is_group=True))
        assert transport.texts[-1].startswith("❓ Unknown game: chess")

        await host.handle(make_event(".endgame", sender=OWNER, chat=GROUP, is_group=True))
        assert transport.texts[-1] == "🏁 Game ended"
        assert host.state.get_game(GROUP) is None

    @pytest.mark.asyncio
    async def test_stats_and_help(self, host, transport):
        await host.handle(make_event(".stats", sender=OWNER))
        assert transport.texts[-1].startswith("📊 Stats")

        await host.handle(make_event(".help", sender=OWNER))
        assert "[owner]" in transport.texts[-1]
        assert ".allow - Allow a user to use a command" in transport.texts[-1]

    @pytest.mark.asyncio
    async def test_builtins_are_owner_only(self, host, transport):
        host.grant_access(USER, "*")
        await host.handle(make_event(f".allow {USER} stats"))
        assert transport.texts == [denial_message(ReasonCode.OWNER_ONLY)]

    def test_builtins_can_be_disabled(self, transport, config):
        config.commands.builtins = False
        host = ChatHost(transport, config=config)
        assert host.list_commands() == []


class TestAdministration:
    def test_register_and_unregister(self, host):
        command = host.register_command({"command": "ping", "aliases": ["p"], "handler": lambda ctx: "pong"})
        assert host.registry.get("p") is command
        assert any(c["name"] == "ping" for c in host.list_commands())

        assert host.unregister_command("ping") is True
        assert host.registry.get("p") is None

    def test_config_owner_and_grants(self, transport, config):
        config.access.grants = {"12345": ["ping"]}
        host = ChatHost(transport, config=config)
        assert host.state.owner == OWNER
        assert host.state.is_command_allowed(USER, "ping")

    def test_set_owner(self, host):
        assert host.set_owner("+4915112345678") == "4915112345678@s.whatsapp.net"

    @pytest.mark.asyncio
    async def test_grant_by_alias_resolves_to_command(self, host, transport):
        handler = Mock(return_value="pong")
        host.register_command({"command": "ping", "aliases": ["pong"], "handler": handler})

        assert host.grant_access(USER, "PONG") is True
        assert host.state.allowed_commands(USER) == {"ping"}

        assert await host.handle(make_event(".pong")) is True
        assert await host.handle(make_event(".ping")) is True
        assert handler.call_count == 2

        assert host.revoke_access(USER, "pong") is True
        assert host.state.allowed_commands(USER) == set()

    @pytest.mark.asyncio
    async def test_permission_hooks(self, host):
        received = []

        async def listener(data):
            received.append((data["event"], data["payload"]["jid"], data["payload"]["command"]))

        host.hooks.on("*", listener)
        assert host.grant_access("12345", "Ping") is True
        assert host.grant_access("12345", "ping") is False
        assert host.revoke_access("12345", "ping") is True
        await host.drain()

        assert received == [
            ("permission.granted", USER, "ping"),
            ("permission.revoked", USER, "ping"),
        ]

    @pytest.mark.asyncio
    async def test_get_stats(self, host):
        host.register_command({"command": "ping", "handler": lambda ctx: "pong"})
        await host.handle(make_event(".ping", sender=OWNER))
        await host.handle(make_event("hello"))

        stats = host.get_stats()
        assert stats["pipeline"]["processed"] == 2
        assert stats["pipeline"]["stopped"] == 1
        assert stats["dispatcher"]["executed_count"] == 1
        assert stats["permissions"]["owner"] == OWNER
        assert stats["registry"]["total_commands"] >= 1
        assert stats["rate_limit"]["total_checked"] == 0

    @pytest.mark.asyncio
    async def test_lifecycle(self, host):
        await host.start()
        assert host.cooldowns.get_stats()["sweep_running"] is True
        await host.stop()
        assert host.cooldowns.get_stats()["sweep_running"] is False

    @pytest.mark.asyncio
    async def test_stop_cancels_stuck_background_work(self, transport, config):
        class StuckArchiver:
            async def store_archive(self, event):
                await asyncio.Event().wait()

        host = ChatHost(transport, config=config, archiver=StuckArchiver())
        await host.start()
        await host.handle(make_event("hello"))
        assert host.background.pending == 1

        await host.stop(timeout=0.01)
        assert host.background.pending == 0
        assert host.background.get_stats()["failed"] == 0
