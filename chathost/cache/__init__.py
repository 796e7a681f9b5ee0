"""
Short-lived state for chathost.

Provides:
- TTL key-value store (cooldowns, ephemeral flags)
- Hit/miss statistics
"""

from chathost.cache.store import (
    ExpiringStore,
    StoreEntry,
    StoreStats,
)

__all__ = [
    "ExpiringStore",
    "StoreEntry",
    "StoreStats",
]
