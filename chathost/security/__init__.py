"""
Security module for chathost.

Provides:
- JID normalization shared by every component
- Permission state (owner, allow-lists, active games)
- Ordered access resolution with reason codes
"""

from chathost.security.jid import (
    normalize_jid,
    try_normalize_jid,
)
from chathost.security.policy import (
    WILDCARD,
    AccessDecision,
    AccessResolver,
    GameSession,
    PermissionState,
    ReasonCode,
    denial_message,
    effective_sender,
    is_valid_move,
    register_game_type,
    resolve_access,
)

__all__ = [
    # JID
    "normalize_jid",
    "try_normalize_jid",
    # Policy
    "WILDCARD",
    "AccessDecision",
    "AccessResolver",
    "GameSession",
    "PermissionState",
    "ReasonCode",
    "denial_message",
    "effective_sender",
    "is_valid_move",
    "register_game_type",
    "resolve_access",
]
