"""Shared test fixtures."""

import json
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from claude_plugins.config import ConfigStore, PluginPaths
from claude_plugins.errors import FetchError
from claude_plugins.marketplace import MarketplaceRegistry
from claude_plugins.models import SearchResponse, SkillInfo
from claude_plugins.settings import SettingsStore
from claude_plugins.store import JsonStore, KeyedMutex


class FakeFetcher:
    """Serves clones and downloads from local directories."""

    def __init__(self):
        self.repos: Dict[str, Path] = {}
        self.downloads: Dict[str, Path] = {}
        self.cloned: List[str] = []
        self.downloaded: List[str] = []
        self.pulled: List[Path] = []

    async def clone(self, url: str, destination: Path, ref: Optional[str] = None) -> None:
        self.cloned.append(url)
        if url not in self.repos:
            raise FetchError(f"git clone failed: {url}")
        shutil.copytree(self.repos[url], destination)

    async def download(self, source_url: str, target: Path, retries: int = 3) -> None:
        self.downloaded.append(source_url)
        if source_url not in self.downloads:
            raise FetchError(f"Download failed after {retries} attempts: {source_url}")
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(self.downloads[source_url], target)

    async def pull(self, repo_path: Path) -> None:
        self.pulled.append(repo_path)

    async def is_git_repo(self, repo_path: Path) -> bool:
        return repo_path.exists()


class FakeRegistry:
    """In-memory stand-in for RegistryClient."""

    def __init__(self):
        self.plugins: Dict[str, str] = {}
        self.skills: Dict[str, SkillInfo] = {}
        self.search_results: List[Dict[str, Any]] = []
        self.resolved: List[str] = []
        self.tracked: List[str] = []

    async def resolve_plugin_url(self, identifier: str) -> Optional[str]:
        self.resolved.append(identifier)
        return self.plugins.get(identifier)

    async def resolve_skill(self, skill) -> Optional[SkillInfo]:
        return self.skills.get(skill.namespace)

    async def track_installation(self, skill) -> None:
        self.tracked.append(skill.namespace)

    async def search_skills(self, query, limit=10, offset=0, order_by=None, order=None):
        page = self.search_results[offset : offset + limit]
        return SearchResponse.model_validate(
            {"skills": page, "total": len(self.search_results), "limit": limit, "offset": offset}
        )


@pytest.fixture
def claude_home(tmp_path, monkeypatch):
    """Isolated Claude home, also exported as CLAUDE_CONFIG_DIR."""
    home = tmp_path / "claude"
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(home))
    monkeypatch.delenv("SKILLS_REGISTRY_URL", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return home


@pytest.fixture
def paths(claude_home):
    return PluginPaths(root=claude_home)


@pytest.fixture
def store():
    return JsonStore(KeyedMutex())


@pytest.fixture
def config_store(paths, store):
    return ConfigStore(paths, store)


@pytest.fixture
def marketplaces(paths, store, config_store):
    return MarketplaceRegistry(paths, store, config_store)


@pytest.fixture
def settings(paths, store):
    return SettingsStore(paths, store)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def make_plugin_repo(tmp_path):
    """Factory for a plugin checkout with an optional .claude-plugin/plugin.json."""

    def make(name: str, metadata: Optional[Dict[str, Any]] = None) -> Path:
        repo = tmp_path / "sources" / name
        (repo / ".claude-plugin").mkdir(parents=True)
        (repo / ".claude-plugin" / "plugin.json").write_text(
            json.dumps(metadata if metadata is not None else {"name": name, "version": "1.0.0"})
        )
        (repo / "commands").mkdir()
        (repo / "commands" / "hello.md").write_text("# hello\n")
        return repo

    return make


@pytest.fixture
def make_marketplace_repo(tmp_path):
    """Factory for a marketplace checkout listing the given plugin names."""

    def make(name: str, plugin_names: List[str]) -> Path:
        repo = tmp_path / "sources" / f"{name}-repo"
        (repo / ".claude-plugin").mkdir(parents=True)
        manifest = {
            "name": name,
            "owner": {"name": "Acme", "url": "https://acme.test"},
            "plugins": [{"name": p, "source": f"./{p}"} for p in plugin_names],
        }
        (repo / ".claude-plugin" / "marketplace.json").write_text(json.dumps(manifest))
        for p in plugin_names:
            (repo / p).mkdir()
        return repo

    return make


@pytest.fixture
def make_skill_dir(tmp_path):
    """Factory for a directory holding a SKILL.md."""

    def make(relative: str, content: str = "---\nname: x\ndescription: A skill\n---\n# Skill\n") -> Path:
        skill = tmp_path / "skill-sources" / relative
        skill.mkdir(parents=True, exist_ok=True)
        (skill / "SKILL.md").write_text(content)
        return skill

    return make
