"""
Access policy for chathost.

Decides whether a sender may act on an event. Checks run in order and
the first match wins:
1. Sender JID cannot be normalized -> INVALID_IDENTITY
2. Sender is the owner -> OWNER
3. No command -> skip to the game check (6)
4. Command is owner-only -> OWNER_ONLY
5. Sender's allow-set contains the command or "*" -> EXPLICITLY_ALLOWED
6. Sender plays the chat's active game and the text is a valid move -> GAME_PLAYER
7. Otherwise -> ACCESS_DENIED
"""

import re
import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from chathost.bus.events import InboundEvent
from chathost.errors import InvalidIdentityError
from chathost.security.jid import normalize_jid, try_normalize_jid


WILDCARD = "*"


class ReasonCode(str, Enum):
    """Why access was granted or refused."""
    OWNER = "owner"
    EXPLICITLY_ALLOWED = "explicitly_allowed"
    GAME_PLAYER = "game_player"
    INVALID_IDENTITY = "invalid_identity"
    OWNER_ONLY = "owner_only"
    ACCESS_DENIED = "access_denied"
    # Command gates, checked by the dispatcher after the resolver allows
    GROUP_ONLY = "group_only"
    PRIVATE_ONLY = "private_only"
    ADMIN_ONLY = "admin_only"
    COOLDOWN_ACTIVE = "cooldown_active"


@dataclass(frozen=True)
class AccessDecision:
    """Result of an access check."""
    allowed: bool
    reason: ReasonCode
    game_type: str | None = None


class CommandLike(Protocol):
    """The parts of a command the resolver reads."""
    name: str
    sudo_only: bool


# Per-game-type move validity. Unknown game types reject every move.
MovePredicate = Callable[[str], bool]

_TICTACTOE_MOVE = re.compile(r"^[1-9]$")
_WORDGUESS_MOVE = re.compile(r"^[a-z]$")

GAME_MOVE_VALIDATORS: dict[str, MovePredicate] = {
    "tictactoe": lambda text: bool(_TICTACTOE_MOVE.match(text)) or text == "quit",
    "wordguess": lambda text: bool(_WORDGUESS_MOVE.match(text)) or text == "quit",
}


def register_game_type(game_type: str, predicate: MovePredicate) -> None:
    """Register the move predicate for a game type."""
    GAME_MOVE_VALIDATORS[game_type.lower()] = predicate


def is_valid_move(game_type: str, text: str | None) -> bool:
    """Check whether text is a syntactically valid move for a game type."""
    if not text or not isinstance(text, str):
        return False
    predicate = GAME_MOVE_VALIDATORS.get(game_type.lower())
    if predicate is None:
        return False
    return predicate(text.strip().lower())


@dataclass
class GameSession:
    """An active game in one chat."""
    type: str
    players: frozenset[str]
    started_by: str | None = None
    started_at: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "players": sorted(self.players),
            "started_by": self.started_by,
            "started_at": self.started_at,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameSession":
        return cls(
            type=data["type"],
            players=frozenset(normalize_jid(p) for p in data.get("players", [])),
            started_by=data.get("started_by"),
            started_at=data.get("started_at", time.time()),
            data=data.get("data", {}),
        )


class PermissionState:
    """
    Process-wide permission state.

    Holds the owner, per-identity command allow-sets and active games.
    Every identity is normalized on the way in. Mutators are synchronous,
    so each call is atomic on the event loop.
    """

    def __init__(self, owner: str | None = None):
        self._owner: str | None = None
        self._allowed: dict[str, set[str]] = {}
        self._games: dict[str, GameSession] = {}
        if owner:
            self.set_owner(owner)

    # Owner

    @property
    def owner(self) -> str | None:
        return self._owner

    def set_owner(self, jid: str) -> str:
        """Set the owner. Raises InvalidIdentityError for a bad JID."""
        self._owner = normalize_jid(jid)
        return self._owner

    def is_owner(self, jid: str) -> bool:
        if self._owner is None:
            return False
        return try_normalize_jid(jid) == self._owner

    # Allow-lists

    def grant(self, jid: str, command: str) -> bool:
        """
        Allow an identity to use a command ("*" for all).

        Returns:
            True if the grant is new, False if it already existed.
        """
        identity = normalize_jid(jid)
        name = command.strip().lower()
        if not name:
            raise ValueError("Command name is empty")
        commands = self._allowed.setdefault(identity, set())
        if name in commands:
            return False
        commands.add(name)
        return True

    def revoke(self, jid: str, command: str) -> bool:
        """
        Remove a grant.

        Returns:
            True if a grant was removed.
        """
        identity = normalize_jid(jid)
        name = command.strip().lower()
        commands = self._allowed.get(identity)
        if not commands or name not in commands:
            return False
        commands.discard(name)
        if not commands:
            del self._allowed[identity]
        return True

    def allowed_commands(self, jid: str) -> frozenset[str]:
        identity = try_normalize_jid(jid)
        if identity is None:
            return frozenset()
        return frozenset(self._allowed.get(identity, ()))

    def is_command_allowed(self, jid: str, command: str) -> bool:
        commands = self.allowed_commands(jid)
        return command.lower() in commands or WILDCARD in commands

    def all_grants(self) -> dict[str, list[str]]:
        return {jid: sorted(cmds) for jid, cmds in self._allowed.items()}

    # Games

    def start_game(
        self,
        chat: str,
        game_type: str,
        players: list[str],
        data: dict[str, Any] | None = None,
    ) -> GameSession:
        """Start (or replace) the active game in a chat."""
        normalized_players = [normalize_jid(p) for p in players]
        session = GameSession(
            type=game_type.lower(),
            players=frozenset(normalized_players),
            started_by=normalized_players[0] if normalized_players else None,
            data=dict(data or {}),
        )
        self._games[normalize_jid(chat)] = session
        return session

    def end_game(self, chat: str) -> bool:
        return self._games.pop(normalize_jid(chat), None) is not None

    def get_game(self, chat: str | None) -> GameSession | None:
        identity = try_normalize_jid(chat)
        if identity is None:
            return None
        return self._games.get(identity)

    def is_game_player(self, chat: str, jid: str) -> bool:
        game = self.get_game(chat)
        return game is not None and try_normalize_jid(jid) in game.players

    def active_games(self) -> dict[str, GameSession]:
        return dict(self._games)

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self._owner,
            "allowed_commands": self.all_grants(),
            "active_games": {chat: g.to_dict() for chat, g in self._games.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PermissionState":
        state = cls(owner=data.get("owner"))
        for jid, commands in data.get("allowed_commands", {}).items():
            for command in commands:
                state.grant(jid, command)
        for chat, game in data.get("active_games", {}).items():
            state._games[normalize_jid(chat)] = GameSession.from_dict(game)
        return state

    def get_stats(self) -> dict[str, Any]:
        return {
            "owner": self._owner,
            "allowed_users": len(self._allowed),
            "total_grants": sum(len(c) for c in self._allowed.values()),
            "active_games": len(self._games),
        }


def resolve_access(
    sender: str,
    command: CommandLike | None,
    state: PermissionState,
    chat: str | None = None,
    text: str | None = None,
) -> AccessDecision:
    """
    Decide whether sender may act.

    Pure with respect to its inputs: reads state, never mutates it.

    Args:
        sender: Sender JID (any form; normalized here).
        command: The resolved command, or None when the event has none.
        state: Permission state to read.
        chat: Chat JID, needed for the game check.
        text: Raw event text, needed for the game check.

    Returns:
        AccessDecision with the matching reason.
    """
    # 1. Identity
    try:
        identity = normalize_jid(sender)
    except InvalidIdentityError:
        return AccessDecision(False, ReasonCode.INVALID_IDENTITY)

    # 2. Owner
    if state.owner is not None and identity == state.owner:
        return AccessDecision(True, ReasonCode.OWNER)

    if command is not None:
        # 4. Owner-only commands
        if command.sudo_only:
            return AccessDecision(False, ReasonCode.OWNER_ONLY)

        # 5. Explicit grants
        if state.is_command_allowed(identity, command.name):
            return AccessDecision(True, ReasonCode.EXPLICITLY_ALLOWED)

    # 6. Game moves
    game = state.get_game(chat)
    if game is not None and identity in game.players and is_valid_move(game.type, text):
        return AccessDecision(True, ReasonCode.GAME_PLAYER, game_type=game.type)

    # 7. Default deny
    return AccessDecision(False, ReasonCode.ACCESS_DENIED)


class AccessResolver:
    """Resolver bound to an injected PermissionState."""

    def __init__(self, state: PermissionState):
        self.state = state

    def resolve(
        self,
        sender: str,
        command: CommandLike | None = None,
        chat: str | None = None,
        text: str | None = None,
    ) -> AccessDecision:
        return resolve_access(sender, command, self.state, chat=chat, text=text)

    def resolve_event(
        self,
        event: InboundEvent,
        command: CommandLike | None = None,
    ) -> AccessDecision:
        """Resolve for an event. Messages sent from the host's own account act as the owner."""
        sender = effective_sender(event, self.state)
        return self.resolve(sender, command, chat=event.chat, text=event.text)


def effective_sender(event: InboundEvent, state: PermissionState) -> str:
    if event.from_self and state.owner:
        return state.owner
    return event.sender


# Message shown to the user for each refusal
DENIAL_MESSAGES: dict[ReasonCode, str] = {
    ReasonCode.INVALID_IDENTITY: "⚠️ Could not verify who sent this message.",
    ReasonCode.OWNER_ONLY: "🔒 This command is restricted to the bot owner.",
    ReasonCode.ACCESS_DENIED: "🚫 You don't have permission to use this command.",
    ReasonCode.GROUP_ONLY: "👥 This command can only be used in groups.",
    ReasonCode.PRIVATE_ONLY: "💬 This command can only be used in private chats.",
    ReasonCode.ADMIN_ONLY: "👑 This command requires group admin privileges.",
}


def denial_message(reason: ReasonCode) -> str:
    return DENIAL_MESSAGES.get(reason, DENIAL_MESSAGES[ReasonCode.ACCESS_DENIED])
