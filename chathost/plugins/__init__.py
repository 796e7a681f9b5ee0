"""
Plugin loading for chathost.

Command modules dropped into a directory, loaded at startup and
reloadable while the host runs.
"""

from chathost.plugins.loader import LoadedPlugin, PluginLoader

__all__ = [
    "LoadedPlugin",
    "PluginLoader",
]
