"""Classify free-form install targets.

An install target is one of:

    @owner/repo/skill                           registry skill
    owner/repo                                  GitHub repo shorthand
    [https://]github.com/owner/repo[.git]       GitHub repo URL
    https://github.com/owner/repo/tree/<ref>    ... pinned to a ref
    https://github.com/owner/repo/tree/<ref>/skills/x[/SKILL.md]
                                                a path inside a repo
    git@github.com:owner/repo[.git]             SSH URL

Branch names containing "/" are not supported: the first segment after
/tree/ is always taken as the whole ref.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from claude_plugins.errors import ParseError

_REGISTRY_RE = re.compile(r"^@?[^/]+/[^/]+/[^/]+$")
_SHORTHAND_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_SSH_RE = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$", re.IGNORECASE)
_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
_HOST_RE = re.compile(r"^github\.com/?", re.IGNORECASE)
_SKILL_MD_RE = re.compile(r"(?:^|/)SKILL\.md$", re.IGNORECASE)
_TREE_PATH_RE = re.compile(r"^([^/]+)/([^/]+)/tree/([^/]+)(?:/(.*))?$", re.IGNORECASE)

SUPPORTED_FORMATS = (
    "Supported formats:\n"
    "  @owner/repo/skill-name   Registry skill\n"
    "  owner/repo               GitHub repo (shorthand)\n"
    "  github.com/owner/repo    GitHub repo URL\n"
    "  git@github.com:owner/repo.git   SSH URL\n"
    "  https://github.com/owner/repo/tree/main/skills/skill-name   Direct path"
)


@dataclass(frozen=True)
class RegistrySkill:
    owner: str
    repo: str
    skill_name: str

    kind = "registry-skill"

    @property
    def namespace(self) -> str:
        return f"@{self.owner}/{self.repo}/{self.skill_name}"


@dataclass(frozen=True)
class GitRepo:
    original: str
    clone_url: str
    owner: str
    repo: str
    ref: Optional[str] = None
    provider: str = "github"

    kind = "git-repo"

    @property
    def web_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


@dataclass(frozen=True)
class GitSkillPath:
    repo: GitRepo
    subdir: str

    kind = "git-skill-path"

    @property
    def skill_name(self) -> str:
        return self.subdir.rstrip("/").rsplit("/", 1)[-1]


InstallTarget = Union[RegistrySkill, GitRepo, GitSkillPath]


def _is_registry_identifier(text: str) -> bool:
    if not _REGISTRY_RE.match(text):
        return False
    lower = text.lower()
    return not (lower.startswith("github.com") or ".git" in lower or "://" in lower)


def _looks_like_git_url(text: str) -> bool:
    return (
        text.startswith(("http://", "https://", "git@"))
        or text.lower().startswith("github.com/")
        or bool(_SHORTHAND_RE.match(text))
    )


def _reject_dot_segments(text: str, segments) -> None:
    """Raise ParseError when any segment is `.` or `..`."""
    if any(s in (".", "..") for s in segments):
        raise ParseError(f"Invalid path segment in {text}\n\n{SUPPORTED_FORMATS}")


def _parse_registry(text: str) -> RegistrySkill:
    owner, repo, skill_name = text[1:].split("/") if text.startswith("@") else text.split("/")
    _reject_dot_segments(text, (owner, repo, skill_name))
    return RegistrySkill(owner=owner, repo=repo, skill_name=skill_name)


def _parse_ssh(text: str) -> Optional[GitRepo]:
    match = _SSH_RE.match(text)
    if not match:
        return None
    owner, repo = match.groups()
    _reject_dot_segments(text, (owner, repo))
    return GitRepo(
        original=text,
        clone_url=text if text.endswith(".git") else f"{text}.git",
        owner=owner,
        repo=repo,
    )


def _clean_subdir(text: str, parts: list) -> str:
    _reject_dot_segments(text, parts)
    subdir = "/".join(parts)
    subdir = _SKILL_MD_RE.sub("", subdir)
    return subdir.rstrip("/")


def _parse_github_url(text: str) -> Optional[InstallTarget]:
    without_protocol = _PROTOCOL_RE.sub("", text)
    if not without_protocol.lower().startswith("github.com/"):
        return None

    segments = [s for s in _HOST_RE.sub("", without_protocol).split("/") if s]
    if len(segments) < 2:
        return None

    owner = segments[0]
    repo = re.sub(r"\.git$", "", segments[1])
    _reject_dot_segments(text, (owner, repo))
    base = GitRepo(
        original=text,
        clone_url=f"https://github.com/{owner}/{repo}.git",
        owner=owner,
        repo=repo,
    )

    if len(segments) > 3 and segments[2] == "tree":
        base = replace(base, ref=segments[3])
        subdir = _clean_subdir(text, segments[4:])
        if subdir:
            return GitSkillPath(repo=base, subdir=subdir)

    return base


def _parse_shorthand(text: str) -> Optional[GitRepo]:
    if not _SHORTHAND_RE.match(text):
        return None
    owner, repo = text.split("/")
    _reject_dot_segments(text, (owner, repo))
    return GitRepo(
        original=text,
        clone_url=f"https://github.com/{owner}/{repo}.git",
        owner=owner,
        repo=repo,
    )


def parse_install_target(text: str) -> InstallTarget:
    """Classify user input as a registry skill, a git repo or a path in a repo.

    Raises:
        ParseError: input matches none of the supported formats
    """
    text = (text or "").strip()
    if not text:
        raise ParseError(f"Empty install target\n\n{SUPPORTED_FORMATS}")

    if _is_registry_identifier(text):
        return _parse_registry(text)

    if not _looks_like_git_url(text):
        raise ParseError(f"Invalid input: {text}\n\n{SUPPORTED_FORMATS}")

    result = _parse_ssh(text) or _parse_github_url(text) or _parse_shorthand(text)
    if result is None:
        raise ParseError(f"Could not parse Git URL: {text}\n\n{SUPPORTED_FORMATS}")
    return result


# =============================================================================
# Tarball paths
# =============================================================================

def normalize_github_path(url: str) -> Tuple[str, Optional[str]]:
    """Turn a GitHub tree URL into an `owner/repo[/subdir]` path plus branch.

    The /tree/<branch>/ segment is removed and a trailing SKILL.md stripped,
    since downloads address directories, not files.
    """
    without_protocol = _PROTOCOL_RE.sub("", url)
    after_host = _HOST_RE.sub("", without_protocol)

    branch = None
    match = _TREE_PATH_RE.match(after_host)
    if match:
        owner, repo, branch, rest = match.groups()
        after_host = f"{owner}/{repo}/{rest}" if rest else f"{owner}/{repo}"

    path = re.sub(r"/SKILL\.md$", "", after_host, flags=re.IGNORECASE)
    return path.rstrip("/"), branch


def tarball_template(path: str, branch: Optional[str] = None) -> str:
    """Build the `gh:` template for a download.

    Only `master` is pinned explicitly. Without a ref the downloader assumes
    `main`, which breaks repositories whose default branch is master.
    """
    if branch == "master":
        return f"gh:{path}#{branch}"
    return f"gh:{path}"


def skill_path_url(target: GitSkillPath) -> str:
    """GitHub tree URL for a path inside a repository."""
    ref = target.repo.ref or "main"
    return f"{target.repo.web_url}/tree/{ref}/{target.subdir}"


# =============================================================================
# Plugin identifiers
# =============================================================================

def extract_plugin_name(identifier: str) -> str:
    """Last path segment of an identifier (`@ns/plugin` -> `plugin`)."""
    name = identifier.strip().rstrip("/")
    if "/" in name or ":" in name:
        name = re.split(r"[/:]", name)[-1]
    return re.sub(r"\.git$", "", name)


def is_valid_plugin_identifier(identifier: str) -> bool:
    """Accept URLs, `[@]namespace/name` and bare names."""
    if not identifier or not identifier.strip():
        return False

    if identifier.startswith(("http://", "https://", "git@")):
        return True

    if "/" in identifier:
        parts = identifier.split("/")
        return len(parts) == 2 and all(parts)

    return True


def shorthand_github_url(identifier: str) -> Optional[str]:
    """Clone URL for an `owner/repo` (or `@owner/repo`) identifier, else None."""
    candidate = identifier[1:] if identifier.startswith("@") else identifier
    if not _SHORTHAND_RE.match(candidate):
        return None
    return f"https://github.com/{candidate}.git"
