"""
Hooks system for chathost.

Event re-emission:
- Callbacks for in-process listeners
- Webhooks for external integrations
"""

from chathost.hooks.service import (
    Hook,
    HookAction,
    HookEvent,
    HookResult,
    HookService,
)

__all__ = [
    "Hook",
    "HookAction",
    "HookEvent",
    "HookResult",
    "HookService",
]
