"""
Tests for the access resolver and permission state.
"""

import pytest

from chathost.bus.events import InboundEvent
from chathost.errors import InvalidIdentityError
from chathost.security.policy import (
    AccessResolver,
    PermissionState,
    ReasonCode,
    denial_message,
    is_valid_move,
    register_game_type,
    resolve_access,
)

from conftest import GROUP, OTHER, OWNER, USER


class Cmd:
    """Minimal command for the resolver."""

    def __init__(self, name: str, sudo_only: bool = False):
        self.name = name
        self.sudo_only = sudo_only


@pytest.fixture
def state():
    return PermissionState(owner=OWNER)


class TestResolveAccess:
    def test_invalid_identity(self, state):
        decision = resolve_access("not a jid", Cmd("ping"), state)
        assert not decision.allowed
        assert decision.reason == ReasonCode.INVALID_IDENTITY

    def test_owner_always_allowed(self, state):
        for command in [Cmd("ping"), Cmd("restart", sudo_only=True), None]:
            decision = resolve_access(OWNER, command, state)
            assert decision.allowed
            assert decision.reason == ReasonCode.OWNER

    def test_owner_matched_after_normalization(self, state):
        decision = resolve_access("OWNER:12@s.whatsapp.net", Cmd("ping"), state)
        assert decision.reason == ReasonCode.OWNER

    def test_sudo_beats_explicit_grant(self, state):
        state.grant(USER, "restart")
        state.grant(USER, "*")
        decision = resolve_access(USER, Cmd("restart", sudo_only=True), state)
        assert not decision.allowed
        assert decision.reason == ReasonCode.OWNER_ONLY

    def test_explicit_grant(self, state):
        state.grant(USER, "ping")
        decision = resolve_access(USER, Cmd("ping"), state)
        assert decision.allowed
        assert decision.reason == ReasonCode.EXPLICITLY_ALLOWED

    def test_wildcard_grant(self, state):
        state.grant(USER, "*")
        assert resolve_access(USER, Cmd("anything"), state).reason == ReasonCode.EXPLICITLY_ALLOWED

    def test_default_deny(self, state):
        decision = resolve_access(USER, Cmd("ping"), state)
        assert not decision.allowed
        assert decision.reason == ReasonCode.ACCESS_DENIED

    def test_no_command_without_game_is_denied(self, state):
        assert resolve_access(USER, None, state, chat=GROUP, text="hello").reason == ReasonCode.ACCESS_DENIED

    def test_game_player_valid_move(self, state):
        state.start_game(GROUP, "tictactoe", [USER, OTHER])
        decision = resolve_access(USER, None, state, chat=GROUP, text="5")
        assert decision.allowed
        assert decision.reason == ReasonCode.GAME_PLAYER
        assert decision.game_type == "tictactoe"

    def test_game_player_invalid_move(self, state):
        state.start_game(GROUP, "tictactoe", [USER])
        assert not resolve_access(USER, None, state, chat=GROUP, text="10").allowed
        assert not resolve_access(USER, None, state, chat=GROUP, text="hello").allowed

    def test_non_player_denied(self, state):
        state.start_game(GROUP, "tictactoe", [USER])
        assert resolve_access(OTHER, None, state, chat=GROUP, text="5").reason == ReasonCode.ACCESS_DENIED

    def test_explicit_grant_checked_before_game(self, state):
        state.grant(USER, "ping")
        state.start_game(GROUP, "tictactoe", [USER])
        decision = resolve_access(USER, Cmd("ping"), state, chat=GROUP, text="5")
        assert decision.reason == ReasonCode.EXPLICITLY_ALLOWED

    def test_does_not_mutate_state(self, state):
        before = state.to_dict()
        resolve_access(USER, Cmd("ping"), state)
        resolve_access("bad", None, state)
        assert state.to_dict() == before


class TestMoveValidators:
    @pytest.mark.parametrize("game, text, valid", [
        ("tictactoe", "1", True),
        ("tictactoe", "9", True),
        ("tictactoe", " 5 ", True),
        ("tictactoe", "0", False),
        ("tictactoe", "quit", True),
        ("tictactoe", "QUIT", True),
        ("wordguess", "a", True),
        ("wordguess", "Z", True),
        ("wordguess", "ab", False),
        ("wordguess", "1", False),
        ("chess", "e4", False),
    ])
    def test_moves(self, game, text, valid):
        assert is_valid_move(game, text) is valid

    def test_empty_text(self):
        assert is_valid_move("tictactoe", None) is False
        assert is_valid_move("tictactoe", "") is False

    def test_register_game_type(self):
        register_game_type("coinflip", lambda text: text in ("heads", "tails"))
        assert is_valid_move("coinflip", "Heads")
        assert not is_valid_move("coinflip", "edge")


class TestPermissionState:
    def test_grant_normalizes_and_reports_new(self, state):
        assert state.grant("12345:7@S.WHATSAPP.NET", "Ping") is True
        assert state.grant(USER, "ping") is False
        assert state.allowed_commands(USER) == frozenset({"ping"})

    def test_revoke(self, state):
        state.grant(USER, "ping")
        assert state.revoke(USER, "ping") is True
        assert state.revoke(USER, "ping") is False
        assert state.all_grants() == {}

    def test_invalid_identity_rejected(self, state):
        with pytest.raises(InvalidIdentityError):
            state.grant("nope", "ping")
        with pytest.raises(InvalidIdentityError):
            state.set_owner("")

    def test_games(self, state):
        session = state.start_game(GROUP, "TicTacToe", [USER])
        assert session.type == "tictactoe"
        assert state.is_game_player(GROUP, USER)
        assert not state.is_game_player(GROUP, OTHER)
        assert state.end_game(GROUP) is True
        assert state.end_game(GROUP) is False
        assert state.get_game(GROUP) is None

    def test_round_trip(self, state):
        state.grant(USER, "ping")
        state.start_game(GROUP, "wordguess", [USER, OTHER], data={"word": "python"})

        restored = PermissionState.from_dict(state.to_dict())
        assert restored.owner == OWNER
        assert restored.is_command_allowed(USER, "ping")
        assert restored.get_game(GROUP).players == frozenset({USER, OTHER})
        assert restored.get_game(GROUP).data == {"word": "python"}


class TestAccessResolver:
    def test_from_self_acts_as_owner(self, state):
        resolver = AccessResolver(state)
        event = InboundEvent(message_id="1", chat=GROUP, sender=USER, text=".restart", from_self=True)
        assert resolver.resolve_event(event, Cmd("restart", sudo_only=True)).reason == ReasonCode.OWNER

    def test_resolve_event_uses_chat_and_text(self, state):
        resolver = AccessResolver(state)
        state.start_game(GROUP, "tictactoe", [USER])
        event = InboundEvent(message_id="1", chat=GROUP, sender=USER, text="3")
        assert resolver.resolve_event(event).reason == ReasonCode.GAME_PLAYER

    def test_denial_messages(self):
        assert "owner" in denial_message(ReasonCode.OWNER_ONLY)
        assert denial_message(ReasonCode.COOLDOWN_ACTIVE) == denial_message(ReasonCode.ACCESS_DENIED)
