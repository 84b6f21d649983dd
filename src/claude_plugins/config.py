"""Paths and CLI configuration."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from claude_plugins.store import JsonStore

log = structlog.get_logger()

DEFAULT_MARKETPLACE = "claude-plugin-marketplace"
DEFAULT_REGISTRY_URL = "https://api.claude-plugins.dev"

# Discovery site shown when something cannot be resolved
DISCOVERY_URL = "https://claude-plugins.dev"


def get_claude_home() -> Path:
    """Root of the host agent's state, honouring CLAUDE_CONFIG_DIR."""
    override = os.getenv("CLAUDE_CONFIG_DIR", "").strip()
    return Path(override).expanduser() if override else Path.home() / ".claude"


@dataclass(frozen=True)
class PluginPaths:
    """Fixed file layout under the Claude home directory.

    ~/.claude/
    ├── settings.json                  # enabledPlugins, shared with the agent
    └── plugins/
        ├── config.json
        ├── known_marketplaces.json
        ├── marketplaces/<name>/.claude-plugin/marketplace.json
        └── cache/<plugin>/
    """

    root: Path

    @classmethod
    def default(cls) -> "PluginPaths":
        return cls(root=get_claude_home())

    @property
    def plugins_dir(self) -> Path:
        return self.root / "plugins"

    @property
    def config_file(self) -> Path:
        return self.plugins_dir / "config.json"

    @property
    def known_marketplaces_file(self) -> Path:
        return self.plugins_dir / "known_marketplaces.json"

    @property
    def marketplaces_dir(self) -> Path:
        return self.plugins_dir / "marketplaces"

    @property
    def cache_dir(self) -> Path:
        return self.plugins_dir / "cache"

    @property
    def settings_file(self) -> Path:
        return self.root / "settings.json"

    def manifest_path(self, install_location: Path) -> Path:
        return Path(install_location) / ".claude-plugin" / "marketplace.json"


class Config(BaseModel):
    """Contents of plugins/config.json."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    default_marketplace: str = Field(default=DEFAULT_MARKETPLACE, alias="defaultMarketplace")
    registry_url: Optional[str] = Field(default=DEFAULT_REGISTRY_URL, alias="registryUrl")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def effective_registry_url(self) -> str:
        """Registry base URL, with SKILLS_REGISTRY_URL taking precedence."""
        override = os.getenv("SKILLS_REGISTRY_URL", "").strip()
        return (override or self.registry_url or DEFAULT_REGISTRY_URL).rstrip("/")


class ConfigStore:
    """Loads and updates config.json, recreating it when invalid."""

    def __init__(self, paths: PluginPaths, store: JsonStore):
        self.paths = paths
        self.store = store

    async def get_config(self) -> Config:
        """Get the CLI configuration, writing defaults if absent or malformed.

        A missing `defaultMarketplace` is the only validity check.
        """
        data = await self.store.read_json(self.paths.config_file)

        if not isinstance(data, dict) or not data.get("defaultMarketplace"):
            if data is not None:
                log.warning("config_reset", path=str(self.paths.config_file))
            config = Config()
            await self.store.write_json(self.paths.config_file, config.to_json())
            return config

        try:
            return Config.model_validate(data)
        except PydanticValidationError as e:
            log.warning("config_reset", path=str(self.paths.config_file), error=str(e))
            config = Config()
            await self.store.write_json(self.paths.config_file, config.to_json())
            return config

    async def set_default_marketplace(self, name: str) -> Config:
        config = await self.get_config()
        config.default_marketplace = name
        await self.store.write_json(self.paths.config_file, config.to_json())
        return config

    async def set_registry_url(self, url: str) -> Config:
        config = await self.get_config()
        config.registry_url = url
        await self.store.write_json(self.paths.config_file, config.to_json())
        return config
