"""Marketplace manifests and the known-marketplaces index.

The index (known_marketplaces.json) says *where* a marketplace lives; the
manifest (<location>/.claude-plugin/marketplace.json) says *what* it holds.
The two files are kept consistent by write order: a manifest is written
before its index entry is created, and an index entry is dropped before the
marketplace's files are deleted. The index therefore never points at a
manifest that was never written.

Lookups for names missing from the index fail closed: they return None or
False rather than raising.
"""

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from claude_plugins.config import ConfigStore, PluginPaths
from claude_plugins.models import (
    KnownMarketplace,
    MarketplaceManifest,
    MarketplaceSource,
    Plugin,
    parse_known_marketplaces,
)
from claude_plugins.store import JsonStore

log = structlog.get_logger()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class MarketplaceRegistry:
    """CRUD over marketplace manifests and known_marketplaces.json."""

    def __init__(self, paths: PluginPaths, store: JsonStore, config: ConfigStore):
        self.paths = paths
        self.store = store
        self.config = config

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    async def get_known_marketplaces(self) -> Dict[str, KnownMarketplace]:
        data = await self.store.read_json(self.paths.known_marketplaces_file)
        return parse_known_marketplaces(data)

    async def get_install_location(self, marketplace_name: str) -> Optional[Path]:
        entry = (await self.get_known_marketplaces()).get(marketplace_name)
        return Path(entry.install_location) if entry else None

    async def _put_index_entry(self, name: str, entry: KnownMarketplace) -> None:
        def put(known):
            if not isinstance(known, dict):
                known = {}
            known[name] = entry.to_json()
            return known

        await self.store.update_json(self.paths.known_marketplaces_file, put)

    async def ensure_default_marketplace(self, marketplace_name: Optional[str] = None) -> Path:
        """Return the local marketplace's location, bootstrapping it if needed.

        An already-registered marketplace is returned untouched. Otherwise an
        empty manifest template is written and then registered as a
        directory source.
        """
        name = marketplace_name or (await self.config.get_config()).default_marketplace

        existing = await self.get_install_location(name)
        if existing is not None:
            return existing

        install_location = self.paths.marketplaces_dir / name
        await self.store.write_json(
            self.paths.manifest_path(install_location),
            MarketplaceManifest.template(name).to_json(),
        )

        entry = KnownMarketplace(
            source=MarketplaceSource(source="directory", path=str(install_location)),
            install_location=str(install_location),
            last_updated=utc_now(),
        )
        try:
            await self._put_index_entry(name, entry)
        except OSError:
            shutil.rmtree(install_location, ignore_errors=True)
            raise

        log.info("marketplace_bootstrapped", name=name, location=str(install_location))
        return install_location

    async def register_marketplace(
        self,
        marketplace_name: str,
        install_location: Path,
        git_url: str,
    ) -> bool:
        """Record a cloned marketplace. Overwrites any previous entry."""
        entry = KnownMarketplace(
            source=MarketplaceSource(source="git", url=git_url),
            install_location=str(install_location),
            last_updated=utc_now(),
        )
        await self._put_index_entry(marketplace_name, entry)
        log.info("marketplace_registered", name=marketplace_name, url=git_url)
        return True

    async def unregister_marketplace(self, marketplace_name: str) -> bool:
        """Drop the index entry only; manifest and files are left alone."""
        removed = False

        def drop(known):
            nonlocal removed
            if isinstance(known, dict) and marketplace_name in known:
                del known[marketplace_name]
                removed = True
            return known if isinstance(known, dict) else {}

        await self.store.update_json(self.paths.known_marketplaces_file, drop)
        return removed

    async def touch_marketplace(self, marketplace_name: str) -> bool:
        """Refresh `lastUpdated` after an update."""
        touched = False

        def touch(known):
            nonlocal touched
            if isinstance(known, dict) and isinstance(known.get(marketplace_name), dict):
                known[marketplace_name]["lastUpdated"] = utc_now()
                touched = True
            return known if isinstance(known, dict) else {}

        await self.store.update_json(self.paths.known_marketplaces_file, touch)
        return touched

    # -------------------------------------------------------------------------
    # Manifests
    # -------------------------------------------------------------------------

    async def _manifest_path(self, marketplace_name: str) -> Optional[Path]:
        location = await self.get_install_location(marketplace_name)
        return self.paths.manifest_path(location) if location else None

    async def get_marketplace_manifest(self, marketplace_name: str) -> Optional[MarketplaceManifest]:
        manifest_path = await self._manifest_path(marketplace_name)
        if manifest_path is None:
            return None

        data = await self.store.read_json(manifest_path)
        if data is None:
            return None
        try:
            return MarketplaceManifest.model_validate(data)
        except PydanticValidationError as e:
            log.warning("manifest_invalid", marketplace=marketplace_name, error=str(e))
            return None

    async def _edit_plugins(
        self,
        marketplace_name: str,
        edit: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]],
    ) -> bool:
        """Rewrite the manifest's raw `plugins` list through `edit`.

        The manifest is validated first, but only the entries `edit` adds
        are serialized from models. Every other entry is written back exactly
        as it was read, so cloned marketplaces keep their own source shapes.
        """
        manifest_path = await self._manifest_path(marketplace_name)
        if manifest_path is None:
            return False

        # A missing manifest must not be recreated from nothing
        if not manifest_path.exists():
            return False

        def apply(data):
            MarketplaceManifest.model_validate(data)
            data["plugins"] = edit(list(data.get("plugins") or []))
            return data

        try:
            await self.store.update_json(manifest_path, apply, default=lambda: None)
        except PydanticValidationError as e:
            # Raised before the write, so the file is left as it was
            log.warning("manifest_invalid", marketplace=marketplace_name, error=str(e))
            return False
        return True

    async def add_plugin_to_marketplace(self, marketplace_name: str, plugin: Plugin) -> bool:
        """Insert or replace (by name) a plugin entry. False if the manifest is missing."""
        def upsert(entries):
            kept = [e for e in entries if e.get("name") != plugin.name]
            return kept + [plugin.to_json()]

        ok = await self._edit_plugins(marketplace_name, upsert)
        if ok:
            log.info("plugin_registered", plugin=plugin.name, marketplace=marketplace_name)
        return ok

    async def remove_plugin_from_marketplace(self, marketplace_name: str, plugin_name: str) -> bool:
        """Remove a plugin entry. Succeeds when the plugin was not listed."""
        return await self._edit_plugins(
            marketplace_name,
            lambda entries: [e for e in entries if e.get("name") != plugin_name],
        )
