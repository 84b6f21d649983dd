"""Plugin install, enable, disable and remove.

Install runs as a pipeline:

    resolve -> clone to temp -> validate -> detect type -> move -> register -> enable

Nothing is written before the clone succeeds. Once files have been moved
into place every later step registers a compensation, and a failure runs
the compensations newest-first before the error propagates.
"""

import inspect
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from claude_plugins.config import DISCOVERY_URL, ConfigStore, PluginPaths
from claude_plugins.errors import (
    ParseError,
    PluginAlreadyEnabledError,
    PluginNotInstalledError,
    PluginsError,
    RegistrationError,
    ResolutionError,
    ValidationError,
)
from claude_plugins.fetch import Fetcher
from claude_plugins.marketplace import MarketplaceRegistry
from claude_plugins.models import PluginEntry
from claude_plugins.registry import RegistryClient
from claude_plugins.settings import SettingsStore
from claude_plugins.store import JsonStore
from claude_plugins.targets import (
    extract_plugin_name,
    is_valid_plugin_identifier,
    shorthand_github_url,
)
from claude_plugins.validation import (
    RepoType,
    detect_repo_type,
    extract_plugin_metadata,
    is_valid_claude_plugin,
)

log = structlog.get_logger()


@dataclass
class InstallResult:
    """Outcome of a successful install.

    Attributes:
        name: Plugin name, as enabled in settings
        marketplace: Marketplace the plugin was enabled from
        kind: Whether a single plugin or a whole marketplace was fetched
        location: Where the files now live
        source_url: Git URL the files were cloned from
    """
    name: str
    marketplace: str
    kind: RepoType
    location: Path
    source_url: str


@dataclass
class DisableResult:
    name: str
    marketplace: str
    # Set when the local marketplace was emptied and deleted with it
    removed_marketplace: bool = False
    removed_path: Optional[Path] = None


@dataclass
class RemoveResult:
    name: str
    marketplace: str
    removed_paths: List[Path] = field(default_factory=list)
    removed_marketplace: bool = False


@dataclass
class UpdateResult:
    marketplace: str
    updated: bool
    error: Optional[str] = None


class Compensations:
    """Undo steps for a partially applied install, run newest-first."""

    def __init__(self):
        self._steps: List[Tuple[str, Callable[..., Any], tuple]] = []

    def push(self, description: str, fn: Callable[..., Any], *args) -> None:
        self._steps.append((description, fn, args))

    async def run(self) -> None:
        while self._steps:
            description, fn, args = self._steps.pop()
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    await result
                log.debug("rollback_step", step=description)
            except Exception as e:
                log.warning("rollback_step_failed", step=description, error=str(e))


def _remove_tree(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def _move_into_place(source: Path, destination: Path) -> None:
    """Move `source` to `destination`, replacing whatever was there."""
    if destination.exists():
        shutil.rmtree(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(destination))


def _safe_child(parent: Path, name: str) -> Optional[Path]:
    """`parent / name` if `name` is a single path component, else None."""
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        return None
    return parent / name


class PluginInstaller:
    """Orchestrates plugin state across marketplaces, settings and the cache.

    Example:
        installer = PluginInstaller(PluginPaths.default())
        result = await installer.install("@every/compounding-engineering")
        await installer.disable(result.name)
    """

    def __init__(
        self,
        paths: PluginPaths,
        store: Optional[JsonStore] = None,
        fetcher: Optional[Fetcher] = None,
        registry: Optional[RegistryClient] = None,
    ):
        self.paths = paths
        self.store = store or JsonStore()
        self.fetcher = fetcher or Fetcher()
        self.registry = registry
        self.config = ConfigStore(paths, self.store)
        self.marketplaces = MarketplaceRegistry(paths, self.store, self.config)
        self.settings = SettingsStore(paths, self.store)

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    async def _lookup(self, identifier: str) -> Optional[str]:
        if self.registry is not None:
            return await self.registry.resolve_plugin_url(identifier)

        config = await self.config.get_config()
        async with RegistryClient(config.effective_registry_url()) as registry:
            return await registry.resolve_plugin_url(identifier)

    async def resolve(self, identifier: str) -> str:
        """Map an identifier to a git URL.

        Direct git URLs are used as given. Anything else goes to the registry;
        if the registry has no answer an `owner/repo` shaped identifier is
        tried as a GitHub repository.

        Raises:
            ResolutionError: nothing could be resolved
        """
        if identifier.startswith(("http://", "https://", "git@")):
            return identifier

        url = await self._lookup(identifier)
        if url:
            log.debug("plugin_resolved", identifier=identifier, url=url)
            return url

        fallback = shorthand_github_url(identifier)
        if fallback:
            log.info("plugin_resolve_fallback", identifier=identifier, url=fallback)
            return fallback

        raise ResolutionError(
            f'Plugin "{identifier}" not found in the registry',
            hint=f"Visit {DISCOVERY_URL} to discover available plugins.",
        )

    async def install(self, identifier: str) -> InstallResult:
        """Install a plugin or a whole marketplace and enable it.

        Raises:
            ParseError: the identifier is malformed
            ResolutionError: the identifier could not be resolved
            FetchError: cloning failed
            ValidationError: the repository is not a Claude plugin
            RegistrationError: the local marketplace manifest could not be updated
        """
        identifier = (identifier or "").strip()
        name = extract_plugin_name(identifier) if identifier else ""
        if not is_valid_plugin_identifier(identifier) or _safe_child(Path("."), name) is None:
            raise ParseError(
                f"Invalid plugin identifier: {identifier!r}",
                hint="Use @namespace/name, namespace/name, name or a git URL.",
            )

        await self.store.ensure_directories(
            self.paths.plugins_dir, self.paths.marketplaces_dir, self.paths.cache_dir
        )
        config = await self.config.get_config()
        url = await self.resolve(identifier)

        temp_location = self.paths.marketplaces_dir / f".temp-{name}"
        _remove_tree(temp_location)
        try:
            await self.fetcher.clone(url, temp_location)

            validation = is_valid_claude_plugin(temp_location)
            if not validation.valid:
                raise ValidationError(f"Invalid plugin {name}: {validation.reason}")

            repo_type = await detect_repo_type(temp_location, self.store)
            log.debug("repo_type_detected", name=name, kind=repo_type)

            if repo_type == "marketplace":
                return await self._install_marketplace(name, temp_location, url)
            return await self._install_plugin(
                name, temp_location, config.default_marketplace, url
            )
        finally:
            _remove_tree(temp_location)

    async def _install_marketplace(self, name: str, temp_location: Path, url: str) -> InstallResult:
        data = await self.store.read_json(self.paths.manifest_path(temp_location))
        manifest_name = data.get("name") if isinstance(data, dict) else None
        marketplace_name = manifest_name if isinstance(manifest_name, str) and manifest_name else name

        final_location = _safe_child(self.paths.marketplaces_dir, marketplace_name)
        if final_location is None:
            raise ValidationError(f"Invalid marketplace name: {marketplace_name!r}")

        undo = Compensations()
        try:
            _move_into_place(temp_location, final_location)
            undo.push("remove marketplace files", _remove_tree, final_location)

            await self.marketplaces.register_marketplace(marketplace_name, final_location, url)
            undo.push(
                "unregister marketplace",
                self.marketplaces.unregister_marketplace,
                marketplace_name,
            )

            await self.settings.enable_plugin(name, marketplace_name)
        except BaseException:
            await undo.run()
            raise

        log.info("marketplace_installed", name=name, marketplace=marketplace_name)
        return InstallResult(
            name=name,
            marketplace=marketplace_name,
            kind="marketplace",
            location=final_location,
            source_url=url,
        )

    async def _install_plugin(
        self,
        name: str,
        temp_location: Path,
        marketplace_name: str,
        url: str,
    ) -> InstallResult:
        bootstrapped = await self.marketplaces.get_install_location(marketplace_name) is None
        marketplace_location = await self.marketplaces.ensure_default_marketplace(marketplace_name)
        final_location = marketplace_location / name

        undo = Compensations()
        if bootstrapped:
            undo.push("remove marketplace files", _remove_tree, marketplace_location)
            undo.push(
                "unregister marketplace",
                self.marketplaces.unregister_marketplace,
                marketplace_name,
            )
        try:
            _move_into_place(temp_location, final_location)
            undo.push("remove plugin files", _remove_tree, final_location)

            plugin = await extract_plugin_metadata(final_location, name, self.store)

            if not await self.marketplaces.add_plugin_to_marketplace(marketplace_name, plugin):
                raise RegistrationError(
                    f'Could not register "{name}" in marketplace "{marketplace_name}"'
                )
            undo.push(
                "drop manifest entry",
                self.marketplaces.remove_plugin_from_marketplace,
                marketplace_name,
                name,
            )

            await self.settings.enable_plugin(name, marketplace_name)
        except BaseException:
            await undo.run()
            raise

        log.info("plugin_installed", name=name, marketplace=marketplace_name)
        return InstallResult(
            name=name,
            marketplace=marketplace_name,
            kind="plugin",
            location=final_location,
            source_url=url,
        )

    # -------------------------------------------------------------------------
    # Enable / disable / remove
    # -------------------------------------------------------------------------

    async def _require(self, plugin_name: str) -> PluginEntry:
        entry = await self.settings.find_plugin(plugin_name)
        if entry is None:
            raise PluginNotInstalledError(plugin_name)
        return entry

    async def enable(self, plugin_name: str) -> PluginEntry:
        """Re-enable a disabled plugin.

        Raises:
            PluginNotInstalledError: no settings entry for the plugin
            PluginAlreadyEnabledError: nothing to do
        """
        entry = await self._require(plugin_name)
        if entry.enabled:
            raise PluginAlreadyEnabledError(plugin_name)

        await self.settings.enable_plugin(entry.name, entry.marketplace)
        return PluginEntry(name=entry.name, marketplace=entry.marketplace, enabled=True)

    async def _has_enabled_plugins(self, marketplace_name: str, exclude: str) -> bool:
        return any(
            e.enabled and e.name != exclude
            for e in await self.settings.list_enabled_plugins()
            if e.marketplace == marketplace_name
        )

    async def _retire_local_marketplace(self, marketplace_name: str, location: Optional[Path]) -> None:
        # Index entry goes first so it never points at deleted files
        await self.marketplaces.unregister_marketplace(marketplace_name)
        if location is not None:
            _remove_tree(location)
        log.info("local_marketplace_removed", marketplace=marketplace_name)

    async def disable(self, plugin_name: str) -> DisableResult:
        """Disable a plugin, keeping its settings entry.

        Plugins of the local marketplace also lose their files. When no other
        enabled plugin is left there, the whole local marketplace is
        unregistered and deleted.
        """
        entry = await self._require(plugin_name)
        config = await self.config.get_config()
        marketplace_name = entry.marketplace

        await self.settings.disable_plugin(entry.name, marketplace_name)
        result = DisableResult(name=entry.name, marketplace=marketplace_name)

        if marketplace_name != config.default_marketplace:
            return result

        location = await self.marketplaces.get_install_location(marketplace_name)

        if not await self._has_enabled_plugins(marketplace_name, exclude=entry.name):
            await self._retire_local_marketplace(marketplace_name, location)
            result.removed_path = location
            result.removed_marketplace = True
        elif location is not None:
            plugin_dir = _safe_child(location, entry.name)
            if plugin_dir is not None:
                _remove_tree(plugin_dir)
                result.removed_path = plugin_dir

        return result

    async def remove(self, plugin_name: str) -> RemoveResult:
        """Forget a plugin: settings entry, manifest entry and cached files.

        Removing the last plugin of the local marketplace, or its last enabled
        one, unregisters and deletes that marketplace too.

        Raises:
            PluginNotInstalledError: neither settings nor the manifest know the plugin
        """
        entry = await self.settings.find_plugin(plugin_name)
        config = await self.config.get_config()
        marketplace_name = entry.marketplace if entry else config.default_marketplace

        manifest = await self.marketplaces.get_marketplace_manifest(marketplace_name)
        in_manifest = manifest is not None and manifest.find_plugin(plugin_name) is not None
        if entry is None and not in_manifest:
            raise PluginNotInstalledError(plugin_name)

        await self.settings.remove_plugin_from_settings(plugin_name, marketplace_name)
        if in_manifest:
            await self.marketplaces.remove_plugin_from_marketplace(marketplace_name, plugin_name)

        result = RemoveResult(name=plugin_name, marketplace=marketplace_name)

        cached = _safe_child(self.paths.cache_dir, plugin_name)
        if cached is not None and cached.exists():
            _remove_tree(cached)
            result.removed_paths.append(cached)

        if marketplace_name == config.default_marketplace:
            location = await self.marketplaces.get_install_location(marketplace_name)
            remaining = await self.marketplaces.get_marketplace_manifest(marketplace_name)
            if location is not None and (
                remaining is None
                or not remaining.plugins
                or not await self._has_enabled_plugins(marketplace_name, exclude=plugin_name)
            ):
                await self._retire_local_marketplace(marketplace_name, location)
                result.removed_paths.append(location)
                result.removed_marketplace = True
            else:
                plugin_dir = _safe_child(location, plugin_name) if location else None
                if plugin_dir is not None and plugin_dir.exists():
                    _remove_tree(plugin_dir)
                    result.removed_paths.append(plugin_dir)

        log.info("plugin_removed", name=plugin_name, marketplace=marketplace_name)
        return result

    async def list_plugins(self) -> Dict[str, List[PluginEntry]]:
        """Settings entries grouped by marketplace, both sorted by name."""
        grouped: Dict[str, List[PluginEntry]] = {}
        for entry in await self.settings.list_enabled_plugins():
            grouped.setdefault(entry.marketplace, []).append(entry)
        return {
            marketplace: sorted(entries, key=lambda e: e.name)
            for marketplace, entries in sorted(grouped.items())
        }

    # -------------------------------------------------------------------------
    # Marketplaces
    # -------------------------------------------------------------------------

    async def update_marketplaces(self, marketplace_name: Optional[str] = None) -> List[UpdateResult]:
        """`git pull` cloned marketplaces, or just the named one.

        Directory marketplaces have nothing to pull and are skipped.
        """
        known = await self.marketplaces.get_known_marketplaces()
        if marketplace_name is not None:
            if marketplace_name not in known:
                raise PluginsError(
                    f'Marketplace "{marketplace_name}" is not known',
                    hint="Run 'claude-plugins marketplace list' to see known marketplaces.",
                )
            known = {marketplace_name: known[marketplace_name]}

        results = []
        for name, entry in known.items():
            location = Path(entry.install_location)
            if entry.source.source == "directory" or not await self.fetcher.is_git_repo(location):
                continue
            try:
                await self.fetcher.pull(location)
            except PluginsError as e:
                log.warning("marketplace_update_failed", marketplace=name, error=str(e))
                results.append(UpdateResult(marketplace=name, updated=False, error=str(e)))
                continue
            await self.marketplaces.touch_marketplace(name)
            results.append(UpdateResult(marketplace=name, updated=True))
        return results
