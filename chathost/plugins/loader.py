"""
Plugin loader for chathost.

A plugin is a ``.py`` file in the plugin directory defining ``COMMANDS``,
a list of command specs (mappings or CommandSpec objects):

    async def hello(ctx):
        return f"Hello {ctx.event.push_name}"

    COMMANDS = [{"command": "hello", "handler": hello}]

Every command is registered with ``plugin`` set to the file's stem, so a
plugin can be unloaded or reloaded as a unit.
"""

import importlib.util
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Mapping

from loguru import logger

from chathost.auto_reply.commands import Command, CommandRegistry, CommandSpec
from chathost.errors import PluginError, RegistrationError


MODULE_PREFIX = "chathost_plugins"


@dataclass
class LoadedPlugin:
    """A plugin whose commands are registered."""
    name: str
    path: Path
    module: ModuleType
    commands: list[str] = field(default_factory=list)
    loaded_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "commands": list(self.commands),
            "loaded_at": self.loaded_at,
        }


class PluginLoader:
    """
    Loads command plugins from a directory.

    Usage:
        loader = PluginLoader(registry, "~/.chathost/plugins")
        loader.load_all()
        loader.reload("greetings")
    """

    def __init__(self, registry: CommandRegistry, directory: str | Path | None = None):
        self.registry = registry
        self.directory = Path(directory).expanduser() if directory else None
        self._plugins: dict[str, LoadedPlugin] = {}
        self._failures: dict[str, str] = {}

    def discover(self) -> list[str]:
        """Plugin names found in the directory; files starting with ``_`` are skipped."""
        if self.directory is None or not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.py") if not p.name.startswith("_"))

    def load_all(self) -> int:
        """
        Load every discovered plugin that is not loaded yet.

        A broken plugin is logged and skipped so the rest still load.

        Returns:
            Number of plugins loaded.
        """
        loaded = 0
        for name in self.discover():
            if name in self._plugins:
                continue
            try:
                self.load(name)
                loaded += 1
            except PluginError as e:
                logger.error(f"Skipping plugin {name}: {e.message}")
        logger.info(f"Loaded {loaded} plugins from {self.directory}")
        return loaded

    def load(self, name: str) -> LoadedPlugin:
        """
        Import a plugin and register its commands.

        Registration is all-or-nothing: if one command is rejected, the
        ones already registered from this plugin are removed again.

        Raises:
            PluginError: If the file is missing, fails to import, has no
                ``COMMANDS`` list, or a command cannot be registered.
        """
        if name in self._plugins:
            raise PluginError(f"Plugin already loaded: {name}", {"plugin": name})

        path = self._path(name)
        module = self._import(name, path)

        specs = getattr(module, "COMMANDS", None)
        if not isinstance(specs, (list, tuple)):
            sys.modules.pop(module.__name__, None)
            raise self._failed(name, f"Plugin {name} defines no COMMANDS list")

        registered: list[Command] = []
        try:
            for spec in specs:
                registered.append(self.registry.register(self._tag(spec, name)))
        except RegistrationError as e:
            for command in registered:
                self.registry.unregister(command.name)
            sys.modules.pop(module.__name__, None)
            raise self._failed(name, f"Plugin {name} rejected: {e.message}") from e

        plugin = LoadedPlugin(
            name=name,
            path=path,
            module=module,
            commands=[c.name for c in registered],
        )
        self._plugins[name] = plugin
        self._failures.pop(name, None)
        logger.info(f"Loaded plugin {name} with {len(plugin.commands)} commands")
        return plugin

    def unload(self, name: str) -> bool:
        """Remove a plugin's commands. Returns False if it was not loaded."""
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            return False

        for command_name in plugin.commands:
            command = self.registry.get(command_name)
            if command is not None and command.plugin == name:
                self.registry.unregister(command_name)
        sys.modules.pop(plugin.module.__name__, None)
        logger.info(f"Unloaded plugin {name}")
        return True

    def reload(self, name: str) -> LoadedPlugin:
        """
        Re-read a plugin from disk and register its commands again.

        If the new version fails to load, the plugin stays unloaded.
        """
        self.unload(name)
        return self.load(name)

    def get(self, name: str) -> LoadedPlugin | None:
        return self._plugins.get(name)

    def list_plugins(self) -> list[dict[str, Any]]:
        return [self._plugins[name].to_dict() for name in sorted(self._plugins)]

    def get_stats(self) -> dict[str, Any]:
        return {
            "directory": str(self.directory) if self.directory else None,
            "loaded": len(self._plugins),
            "commands": sum(len(p.commands) for p in self._plugins.values()),
            "failed": dict(self._failures),
        }

    def _path(self, name: str) -> Path:
        if self.directory is None:
            raise PluginError("No plugin directory configured", {"plugin": name})
        if not name or name.startswith("_") or Path(name).name != name:
            raise self._failed(name, f"Invalid plugin name: {name!r}")
        path = self.directory / f"{name}.py"
        if not path.is_file():
            raise self._failed(name, f"Plugin not found: {path}")
        return path

    def _import(self, name: str, path: Path) -> ModuleType:
        module_name = f"{MODULE_PREFIX}.{name}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None:
            raise self._failed(name, f"Cannot import plugin from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            # Compiled from source every time; cached bytecode can miss same-second edits
            code = compile(path.read_bytes(), str(path), "exec")
            exec(code, module.__dict__)
        except Exception as e:
            sys.modules.pop(module_name, None)
            logger.opt(exception=e).error(f"Plugin {name} failed to import")
            raise self._failed(name, f"Plugin {name} failed to import: {e}") from e
        return module

    @staticmethod
    def _tag(spec: Any, name: str) -> Any:
        if isinstance(spec, CommandSpec):
            return spec.model_copy(update={"plugin": name})
        if isinstance(spec, Mapping):
            return {**spec, "plugin": name}
        # Left to the registry to reject
        return spec

    def _failed(self, name: str, message: str) -> PluginError:
        self._failures[name] = message
        return PluginError(message, {"plugin": name})
