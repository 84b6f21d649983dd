"""The enabledPlugins map in the host agent's settings.json.

Keys are `<plugin>@<marketplace>`; a missing key means "never installed",
True means enabled and False means disabled but retained. settings.json is
owned by the host agent, so every other key in it is preserved.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from claude_plugins.config import PluginPaths
from claude_plugins.models import PluginEntry, plugin_key, split_plugin_key
from claude_plugins.store import JsonStore

log = structlog.get_logger()


def backup_file_with_date(file_path: Path) -> Optional[Path]:
    """Create a backup of a file with date suffix.

    Returns the backup path if created, None otherwise.
    """
    if not file_path.exists() or file_path.is_symlink():
        return None

    date_suffix = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = file_path.with_suffix(f".json.bak.{date_suffix}")
    shutil.copy2(file_path, backup_path)
    return backup_path


class SettingsStore:
    """Tri-state plugin enablement stored in settings.json."""

    def __init__(self, paths: PluginPaths, store: JsonStore):
        self.paths = paths
        self.store = store

    def _normalize(self, data: Any) -> Dict[str, Any]:
        """Coerce whatever is on disk into a settings dict with a valid map."""
        if not isinstance(data, dict):
            if data is None and self.paths.settings_file.exists():
                content = self.paths.settings_file.read_bytes()
                if content.strip():
                    backup = backup_file_with_date(self.paths.settings_file)
                    log.warning(
                        "settings_unreadable",
                        path=str(self.paths.settings_file),
                        backup=str(backup),
                    )
            data = {}

        enabled = data.get("enabledPlugins")
        if not isinstance(enabled, dict):
            if enabled is not None:
                log.warning("settings_enabled_plugins_invalid", value=repr(enabled)[:80])
            enabled = {}
        data["enabledPlugins"] = {k: v for k, v in enabled.items() if isinstance(v, bool)}
        return data

    async def get_enabled_map(self) -> Dict[str, bool]:
        data = await self.store.read_json(self.paths.settings_file)
        return self._normalize(data)["enabledPlugins"]

    async def _update(self, change) -> Dict[str, bool]:
        def apply(data):
            data = self._normalize(data)
            change(data["enabledPlugins"])
            return data

        written = await self.store.update_json(self.paths.settings_file, apply, default=lambda: None)
        return written["enabledPlugins"]

    async def enable_plugin(self, plugin_name: str, marketplace_name: str) -> None:
        key = plugin_key(plugin_name, marketplace_name)
        await self._update(lambda enabled: enabled.__setitem__(key, True))
        log.info("plugin_enabled", key=key)

    async def disable_plugin(self, plugin_name: str, marketplace_name: str) -> None:
        key = plugin_key(plugin_name, marketplace_name)
        await self._update(lambda enabled: enabled.__setitem__(key, False))
        log.info("plugin_disabled", key=key)

    async def remove_plugin_from_settings(self, plugin_name: str, marketplace_name: str) -> None:
        """Forget the plugin entirely, unlike disable_plugin."""
        key = plugin_key(plugin_name, marketplace_name)
        await self._update(lambda enabled: enabled.pop(key, None))
        log.info("plugin_forgotten", key=key)

    async def is_plugin_enabled(self, plugin_name: str, marketplace_name: str) -> bool:
        enabled = await self.get_enabled_map()
        return enabled.get(plugin_key(plugin_name, marketplace_name)) is True

    async def list_enabled_plugins(self) -> List[PluginEntry]:
        """Every settings entry as a PluginEntry; malformed keys are skipped."""
        entries = []
        for key, enabled in (await self.get_enabled_map()).items():
            parts = split_plugin_key(key)
            if parts is None:
                continue
            name, marketplace = parts
            entries.append(PluginEntry(name=name, marketplace=marketplace, enabled=enabled))
        return entries

    async def find_plugin(self, plugin_name: str) -> Optional[PluginEntry]:
        """First entry for `plugin_name`, enabled or not."""
        return next(
            (e for e in await self.list_enabled_plugins() if e.name == plugin_name),
            None,
        )
