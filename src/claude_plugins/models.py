"""Typed views of the JSON documents claude-plugins reads and writes.

External JSON (fetched plugin.json / marketplace.json, registry responses)
is validated into these models. Structural problems surface as
ValidationError instead of being papered over with defaults. Unknown keys
are kept so that rewriting a manifest does not drop fields we don't model.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from claude_plugins.errors import ValidationError

log = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_model(model: Type[ModelT], data: Any, what: str) -> ModelT:
    """Validate `data` into `model`, raising ValidationError with a short reason."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {what}: {problems}") from e


# =============================================================================
# Plugins
# =============================================================================

class PluginSource(_Document):
    """Where a plugin's files come from.

    Tagged by `source`. Shorthand forms found in the wild are normalized:
    a bare string is a relative directory (or a URL), and
    `{"source": "github", "repo": "owner/repo"}` becomes a git source.
    """

    source: Literal["directory", "git", "url"]
    path: Optional[str] = None
    url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.startswith("git@") or value.endswith(".git"):
                return {"source": "git", "url": value}
            if value.startswith(("http://", "https://")):
                return {"source": "url", "url": value}
            return {"source": "directory", "path": value}
        if isinstance(value, dict) and value.get("source") == "github":
            repo = value.get("repo")
            if isinstance(repo, str) and repo:
                rest = {k: v for k, v in value.items() if k not in ("source", "repo")}
                return {**rest, "source": "git", "url": f"https://github.com/{repo}.git"}
        return value

    @model_validator(mode="after")
    def _check_location(self) -> "PluginSource":
        if self.source == "directory" and not self.path:
            raise ValueError("directory source requires a path")
        if self.source in ("git", "url") and not self.url:
            raise ValueError(f"{self.source} source requires a url")
        return self


class Author(_Document):
    name: str
    url: Optional[str] = None
    email: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        return value


class Plugin(_Document):
    """A plugin entry inside a marketplace manifest."""

    name: str = Field(min_length=1)
    source: PluginSource
    description: str = ""
    version: Optional[str] = None
    author: Optional[Author] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None
    keywords: Optional[List[str]] = None
    category: Optional[str] = None
    strict: Optional[bool] = None
    commands: Optional[Union[str, List[str]]] = None
    agents: Optional[Union[str, List[str]]] = None
    mcp_servers: Optional[Union[str, List[str], Dict[str, Any]]] = Field(
        default=None, alias="mcpServers"
    )


# =============================================================================
# Marketplaces
# =============================================================================

class MarketplaceOwner(_Document):
    name: str
    url: str = ""


class MarketplaceMetadata(_Document):
    description: str = ""
    version: str = ""


class MarketplaceManifest(_Document):
    """Contents of <marketplace>/.claude-plugin/marketplace.json."""

    name: str = Field(min_length=1)
    owner: Optional[MarketplaceOwner] = None
    metadata: Optional[MarketplaceMetadata] = None
    plugins: List[Plugin] = Field(default_factory=list)

    @classmethod
    def template(cls, name: str) -> "MarketplaceManifest":
        """Empty manifest used to bootstrap the local marketplace."""
        return cls(
            name=name,
            owner=MarketplaceOwner(name="Local", url=""),
            metadata=MarketplaceMetadata(description="Local marketplace", version="1.0.0"),
            plugins=[],
        )

    def find_plugin(self, name: str) -> Optional[Plugin]:
        return next((p for p in self.plugins if p.name == name), None)


class MarketplaceSource(_Document):
    source: Literal["directory", "git", "github", "url"]
    path: Optional[str] = None
    url: Optional[str] = None
    repo: Optional[str] = None


class KnownMarketplace(_Document):
    """One entry of known_marketplaces.json."""

    source: MarketplaceSource
    install_location: str = Field(alias="installLocation")
    last_updated: str = Field(alias="lastUpdated")


def parse_known_marketplaces(data: Any) -> Dict[str, KnownMarketplace]:
    """Validate the known-marketplaces index, skipping unreadable entries."""
    if not isinstance(data, dict):
        return {}

    known: Dict[str, KnownMarketplace] = {}
    for name, entry in data.items():
        try:
            known[name] = KnownMarketplace.model_validate(entry)
        except PydanticValidationError as e:
            log.warning("known_marketplace_invalid", name=name, error=str(e))
    return known


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class PluginEntry:
    """A flattened `name@marketplace -> enabled` settings entry."""

    name: str
    marketplace: str
    enabled: bool

    @property
    def key(self) -> str:
        return plugin_key(self.name, self.marketplace)


def plugin_key(name: str, marketplace: str) -> str:
    return f"{name}@{marketplace}"


def split_plugin_key(key: str) -> Optional[Tuple[str, str]]:
    """Split `name@marketplace`; None when either half is missing."""
    if "@" not in key:
        return None
    name, marketplace = key.rsplit("@", 1)
    if not name or not marketplace:
        return None
    return name, marketplace


# =============================================================================
# Registry responses
# =============================================================================

class SkillInfo(_Document):
    name: str
    namespace: str = ""
    source_url: str = Field(alias="sourceUrl", min_length=1)
    description: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None


class SearchResultSkill(_Document):
    id: str = ""
    name: str
    namespace: str
    source_url: str = Field(default="", alias="sourceUrl")
    description: Optional[str] = None
    author: str = ""
    stars: int = 0
    installs: int = 0
    verified: bool = False


class SearchResponse(_Document):
    skills: List[SearchResultSkill] = Field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0
