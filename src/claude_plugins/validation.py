"""Structure checks for fetched plugins and skills, and metadata extraction."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Optional

import structlog

from claude_plugins.errors import ValidationError
from claude_plugins.models import Plugin, parse_model
from claude_plugins.store import JsonStore

log = structlog.get_logger()

RepoType = Literal["marketplace", "plugin"]


@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[str] = None


def metadata_dir(repo_path: Path) -> Path:
    return repo_path / ".claude-plugin"


def is_valid_claude_plugin(repo_path: Path) -> ValidationResult:
    """Check for `.claude-plugin/` holding marketplace.json or plugin.json."""
    if not repo_path.exists():
        return ValidationResult(valid=False, reason="Plugin directory does not exist")

    claude_plugin_dir = metadata_dir(repo_path)
    if not claude_plugin_dir.is_dir():
        return ValidationResult(valid=False, reason="Missing .claude-plugin directory")

    if not (claude_plugin_dir / "marketplace.json").exists() and not (
        claude_plugin_dir / "plugin.json"
    ).exists():
        return ValidationResult(
            valid=False,
            reason="Missing metadata file (marketplace.json or plugin.json)",
        )

    return ValidationResult(valid=True)


async def detect_repo_type(repo_path: Path, store: JsonStore) -> RepoType:
    """A marketplace.json carrying a `plugins` array makes the repo a marketplace."""
    data = await store.read_json(metadata_dir(repo_path) / "marketplace.json")
    if isinstance(data, dict) and isinstance(data.get("plugins"), list):
        return "marketplace"
    return "plugin"


def has_skill_md(skill_path: Path) -> bool:
    return (skill_path / "SKILL.md").is_file()


def validate_skill_md(skill_path: Path) -> bool:
    """SKILL.md must exist and have content."""
    skill_md = skill_path / "SKILL.md"
    if not skill_md.is_file():
        return False
    try:
        return bool(skill_md.read_text(encoding="utf-8").strip())
    except (OSError, UnicodeDecodeError):
        return False


def _with_local_source(data: Any, plugin_location: Path, fallback_name: str) -> dict:
    if not isinstance(data, dict):
        raise ValidationError(f"Plugin metadata for {fallback_name} must be a JSON object")
    # The host agent discovers plugins through an absolute directory source
    return {
        "name": fallback_name,
        **data,
        "source": {"source": "directory", "path": str(plugin_location)},
    }


async def extract_plugin_metadata(
    plugin_location: Path,
    plugin_name: str,
    store: JsonStore,
) -> Plugin:
    """Build the manifest entry for a plugin that now lives at `plugin_location`.

    Looks at `.claude-plugin/marketplace.json` (picking the entry named
    `plugin_name`, else the first) and then `.claude-plugin/plugin.json`.
    With neither file present a minimal entry is produced.

    Raises:
        ValidationError: the metadata file exists but is malformed
    """
    marketplace_json = metadata_dir(plugin_location) / "marketplace.json"
    plugin_json = metadata_dir(plugin_location) / "plugin.json"

    if marketplace_json.exists():
        data = await store.read_json(marketplace_json)
        if data is None:
            raise ValidationError(f"Unreadable {marketplace_json.name} for {plugin_name}")

        plugins = data.get("plugins") if isinstance(data, dict) else None
        if isinstance(plugins, list):
            if not plugins:
                raise ValidationError(f"{marketplace_json.name} for {plugin_name} lists no plugins")
            entry = next(
                (p for p in plugins if isinstance(p, dict) and p.get("name") == plugin_name),
                plugins[0],
            )
            return parse_model(
                Plugin, _with_local_source(entry, plugin_location, plugin_name), "plugin metadata"
            )

        return parse_model(
            Plugin, _with_local_source(data, plugin_location, plugin_name), "plugin metadata"
        )

    if plugin_json.exists():
        data = await store.read_json(plugin_json)
        if data is None:
            raise ValidationError(f"Unreadable {plugin_json.name} for {plugin_name}")
        return parse_model(
            Plugin, _with_local_source(data, plugin_location, plugin_name), "plugin metadata"
        )

    log.warning("plugin_metadata_missing", plugin=plugin_name)
    return Plugin(
        name=plugin_name,
        source={"source": "directory", "path": str(plugin_location)},
        description=f"Plugin: {plugin_name} (no metadata available)",
        version="1.0.0",
        author={"name": "Unknown"},
    )
