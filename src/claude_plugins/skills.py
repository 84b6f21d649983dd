"""Agent skills: install, list and search across supported clients.

A skill is a directory holding a SKILL.md. Each client (Claude Code, Codex,
Cursor, ...) reads skills from a project-local directory and, for some
clients, from a global one under the user's home.
"""

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import structlog
import yaml

from claude_plugins.errors import ResolutionError, UnknownClientError, ValidationError
from claude_plugins.fetch import Fetcher
from claude_plugins.models import SearchResponse
from claude_plugins.registry import RegistryClient
from claude_plugins.targets import (
    GitRepo,
    GitSkillPath,
    RegistrySkill,
    parse_install_target,
    skill_path_url,
)
from claude_plugins.validation import validate_skill_md

log = structlog.get_logger()

Scope = Literal["global", "local"]

SKILLS_DISCOVERY_URL = "https://claude-plugins.dev/skills"
DEFAULT_CLIENT = "claude-code"

# Directories never searched for SKILL.md when installing a whole repository
_SKIP_DIRS = {".git", "node_modules", "__pycache__"}


# =============================================================================
# Client Configuration
# =============================================================================

@dataclass(frozen=True)
class ClientConfig:
    """Where one client looks for skills.

    `local_dir` is relative to the project directory and `global_dir` to the
    user's home. Clients without a global directory only support local
    installs.
    """
    name: str
    local_dir: str
    global_dir: Optional[str] = None

    def local_path(self, cwd: Path) -> Path:
        return cwd / self.local_dir

    def global_path(self, home: Path) -> Optional[Path]:
        return home / self.global_dir if self.global_dir else None


CLIENT_CONFIGS: Dict[str, ClientConfig] = {
    "claude-code": ClientConfig("Claude Code", ".claude/skills", ".claude/skills"),
    "codex": ClientConfig("Codex", ".codex/skills", ".codex/skills"),
    "cursor": ClientConfig("Cursor", ".cursor/skills"),
    "github": ClientConfig("GitHub", ".github/skills"),
    "letta": ClientConfig("Letta", ".skills"),
    "vscode": ClientConfig("VS Code", ".github/skills"),
    "amp": ClientConfig("AMP", ".agents/skills", ".config/agents/skills"),
    "goose": ClientConfig("Goose", ".agents/skills", ".config/goose/skills"),
    "opencode": ClientConfig("OpenCode", ".opencode/skill", ".opencode/skill"),
    "gemini": ClientConfig("Gemini CLI", ".gemini/skills", ".gemini/skills"),
    "windsurf": ClientConfig("Windsurf", ".windsurf/skills", ".codeium/windsurf/skills"),
    "antigravity": ClientConfig("Antigravity", ".agent/skills", ".gemini/antigravity/skills"),
    "trae": ClientConfig("Trae", ".trae/skills"),
    "qoder": ClientConfig("Qoder", ".qoder/skills"),
    "codebuddy": ClientConfig("CodeBuddy", ".codebuddy/skills"),
}


def get_client_config(client: str) -> ClientConfig:
    config = CLIENT_CONFIGS.get(client)
    if config is None:
        raise UnknownClientError(client, list(CLIENT_CONFIGS))
    return config


# =============================================================================
# SKILL.md helpers
# =============================================================================

def read_frontmatter(skill_md: Path) -> Dict[str, Any]:
    """YAML front matter of a markdown file, or {} if there is none."""
    try:
        content = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return {}

    if not content.startswith("---"):
        return {}
    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}

    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError as e:
        log.debug("frontmatter_invalid", path=str(skill_md), error=str(e))
        return {}
    return data if isinstance(data, dict) else {}


def discover_skill_dirs(root: Path) -> List[Path]:
    """Every directory under `root` (root included) with a non-empty SKILL.md."""
    found = []
    for skill_md in sorted(root.rglob("SKILL.md")):
        rel_parts = skill_md.relative_to(root).parts[:-1]
        if any(part in _SKIP_DIRS for part in rel_parts):
            continue
        if validate_skill_md(skill_md.parent):
            found.append(skill_md.parent)
    return found


@dataclass
class InstalledSkill:
    name: str
    client: str
    scope: Scope
    path: Path
    description: str = ""


def list_installed(
    client: Optional[str] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> List[InstalledSkill]:
    """Scan local then global skill directories of one client, or all."""
    cwd = cwd or Path.cwd()
    home = home or Path.home()
    clients = [client] if client else list(CLIENT_CONFIGS)
    installed: List[InstalledSkill] = []

    for key in clients:
        config = get_client_config(key)
        dirs: List[tuple] = [("local", config.local_path(cwd))]
        global_path = config.global_path(home)
        if global_path is not None:
            dirs.append(("global", global_path))

        for scope, directory in dirs:
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                if not entry.is_dir() or entry.name.startswith("."):
                    continue
                description = read_frontmatter(entry / "SKILL.md").get("description") or ""
                installed.append(
                    InstalledSkill(
                        name=entry.name,
                        client=config.name,
                        scope=scope,
                        path=entry,
                        description=str(description).strip(),
                    )
                )
    return installed


def skill_install_path(base_dir: Path, name: str) -> Path:
    """`base_dir / name`, which must be a direct child of `base_dir`.

    Raises:
        ValidationError: `name` is empty, `.`, `..` or contains a separator
    """
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ValidationError(f"Invalid skill name: {name!r}")
    return base_dir / name


@dataclass
class SkillInstallResult:
    """One skill written by an install."""
    name: str
    path: Path
    scope: Scope
    client: str
    # True when an existing install was overwritten
    updated: bool = False


class SkillInstaller:
    """Installs skills from the registry or straight from GitHub.

    Example:
        async with RegistryClient(url) as registry:
            installer = SkillInstaller(registry)
            results = await installer.install("@anthropics/skills/pdf")
    """

    def __init__(
        self,
        registry: RegistryClient,
        fetcher: Optional[Fetcher] = None,
        cwd: Optional[Path] = None,
        home: Optional[Path] = None,
    ):
        self.registry = registry
        self.fetcher = fetcher or Fetcher()
        self._cwd = cwd
        self._home = home

    @property
    def cwd(self) -> Path:
        # Resolved per call: the project directory is wherever the CLI runs
        return self._cwd or Path.cwd()

    @property
    def home(self) -> Path:
        return self._home or Path.home()

    def install_dir(self, config: ClientConfig, scope: Scope) -> Path:
        if scope == "global":
            global_path = config.global_path(self.home)
            if global_path is not None:
                return global_path
        return config.local_path(self.cwd)

    def resolve_scope(self, config: ClientConfig, local: bool) -> Scope:
        if local:
            return "local"
        if config.global_dir is None:
            log.info("client_local_only", client=config.name)
            return "local"
        return "global"

    async def install(
        self,
        identifier: str,
        client: str = DEFAULT_CLIENT,
        local: bool = False,
    ) -> List[SkillInstallResult]:
        """Install the skill(s) named by `identifier` for `client`.

        Raises:
            UnknownClientError: `client` is not supported
            ParseError: the identifier is not a supported format
            ResolutionError: a registry skill is not registered
            FetchError: downloading failed
            ValidationError: the download holds no usable SKILL.md
        """
        config = get_client_config(client)
        scope = self.resolve_scope(config, local)
        base_dir = self.install_dir(config, scope)
        target = parse_install_target(identifier)

        if isinstance(target, RegistrySkill):
            return [await self._install_registry_skill(target, base_dir, scope, client)]
        if isinstance(target, GitSkillPath):
            return [await self._install_skill_path(target, base_dir, scope, client)]
        return await self._install_repo(target, base_dir, scope, client)

    async def _download_skill(self, source_url: str, path: Path) -> bool:
        """Download into `path` and check SKILL.md. Returns whether it was an update."""
        updated = path.exists()
        if updated:
            log.info("skill_overwrite", path=str(path))
        path.parent.mkdir(parents=True, exist_ok=True)

        await self.fetcher.download(source_url, path)

        if not validate_skill_md(path):
            shutil.rmtree(path, ignore_errors=True)
            raise ValidationError("Invalid skill: missing or empty SKILL.md")
        return updated

    async def _install_registry_skill(
        self,
        target: RegistrySkill,
        base_dir: Path,
        scope: Scope,
        client: str,
    ) -> SkillInstallResult:
        info = await self.registry.resolve_skill(target)
        if info is None:
            raise ResolutionError(
                f'Skill "{target.namespace}" not found in the registry',
                hint=f"Visit {SKILLS_DISCOVERY_URL} to discover available skills.",
            )
        log.debug("skill_resolved", skill=target.namespace, source=info.source_url)

        path = skill_install_path(base_dir, target.skill_name)
        updated = await self._download_skill(info.source_url, path)
        await self.registry.track_installation(target)

        return SkillInstallResult(
            name=target.skill_name, path=path, scope=scope, client=client, updated=updated
        )

    async def _install_skill_path(
        self,
        target: GitSkillPath,
        base_dir: Path,
        scope: Scope,
        client: str,
    ) -> SkillInstallResult:
        path = skill_install_path(base_dir, target.skill_name)
        updated = await self._download_skill(skill_path_url(target), path)
        return SkillInstallResult(
            name=target.skill_name, path=path, scope=scope, client=client, updated=updated
        )

    async def _install_repo(
        self,
        target: GitRepo,
        base_dir: Path,
        scope: Scope,
        client: str,
    ) -> List[SkillInstallResult]:
        source_url = target.web_url
        if target.ref:
            source_url = f"{source_url}/tree/{target.ref}"

        results = []
        with tempfile.TemporaryDirectory(prefix="claude-skills-") as tmp:
            staging = Path(tmp) / target.repo
            await self.fetcher.download(source_url, staging)

            skill_dirs = discover_skill_dirs(staging)
            if not skill_dirs:
                raise ValidationError(f"No SKILL.md found in {target.owner}/{target.repo}")

            base_dir.mkdir(parents=True, exist_ok=True)
            for skill_dir in skill_dirs:
                name = skill_dir.name if skill_dir != staging else target.repo
                path = skill_install_path(base_dir, name)
                updated = path.exists()
                if updated:
                    shutil.rmtree(path)
                shutil.copytree(skill_dir, path)
                log.debug("skill_copied", skill=name, path=str(path))
                results.append(
                    SkillInstallResult(
                        name=name, path=path, scope=scope, client=client, updated=updated
                    )
                )
        return results

    def list_installed(self, client: Optional[str] = None) -> List[InstalledSkill]:
        return list_installed(client, cwd=self.cwd, home=self.home)

    async def search(self, query: str, limit: int = 10, offset: int = 0) -> SearchResponse:
        return await self.registry.search_skills(query, limit=limit, offset=offset)
