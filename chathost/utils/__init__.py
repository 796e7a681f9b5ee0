"""Utility helpers for chathost."""

from chathost.utils.tasks import BackgroundTasks, KeyedLocks

__all__ = ["BackgroundTasks", "KeyedLocks"]
