"""Plugin discovery and mounting.

A plugin is a directory ``<plugins_dir>/<name>/`` holding ``plugin.py``.
The module must expose ``plugin``: a Bot, a callable taking the Bot, or
an object with ``install(bot)``. It may set ``PREFIX`` to mount its
commands under a prefix; ``plugins.<name>.prefix`` in settings wins.
"""

import importlib.util
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger("switchboard.plugins")


@dataclass
class LoadedPlugin:
    name: str
    plugin: Any
    prefix: str = ""


class PluginLoader:
    """Discovers plugin modules and mounts them on a Bot."""

    def __init__(
        self,
        plugins_dir: Path,
        allowlist: Optional[List[str]] = None,
        settings: Optional[Dict[str, dict]] = None,
    ):
        self.plugins_dir = Path(plugins_dir)
        self.allowlist = allowlist
        self._settings = settings or {}
        self.plugins: List[LoadedPlugin] = []

    def discover_and_load(self) -> None:
        """Scan plugins_dir for plugin.py files and load them."""
        if not self.plugins_dir.is_dir():
            logger.info("plugin_loader_no_dir", path=str(self.plugins_dir))
            return

        for plugin_dir in sorted(self.plugins_dir.iterdir()):
            plugin_file = plugin_dir / "plugin.py"
            if not plugin_dir.is_dir() or not plugin_file.is_file():
                continue

            name = plugin_dir.name
            if self.allowlist is not None and name not in self.allowlist:
                logger.warning("plugin_blocked_not_in_allowlist", plugin=name, allowlist=self.allowlist)
                continue

            try:
                self._load_plugin(name, plugin_file)
            except Exception as e:
                logger.error(
                    "plugin_load_failed",
                    plugin=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info("plugin_loader_complete", plugins_loaded=len(self.plugins))

    def _load_plugin(self, name: str, plugin_file: Path) -> None:
        plugin_config = self._settings.get(name, {})
        if not isinstance(plugin_config, dict):
            plugin_config = {}
        if plugin_config.get("enabled") is False:
            logger.info("plugin_skipped_disabled", plugin=name)
            return

        module_name = f"switchboard_plugins.{name}"
        spec = importlib.util.spec_from_file_location(module_name, plugin_file)
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise

        plugin = getattr(module, "plugin", None)
        if plugin is None:
            logger.warning("plugin_no_entry_found", plugin=name)
            return

        prefix = plugin_config.get("prefix", getattr(module, "PREFIX", "")) or ""
        self.plugins.append(LoadedPlugin(name=name, plugin=plugin, prefix=prefix))
        logger.info("plugin_loaded", plugin=name, prefix=prefix)

    def install_all(self, bot) -> None:
        """Mount every loaded plugin on ``bot`` in name order."""
        for loaded in self.plugins:
            bot.use(loaded.plugin, prefix=loaded.prefix)
            logger.info("plugin_installed", plugin=loaded.name, prefix=loaded.prefix)
