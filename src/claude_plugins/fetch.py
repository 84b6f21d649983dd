"""Fetch primitives: shallow git clones and GitHub tarball downloads.

Every fetch is bounded by FETCH_TIMEOUT. A clone that times out is killed
and its partial checkout removed; downloads are staged next to their target
and only swapped in once extraction succeeded.
"""

import asyncio
import os
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiofiles
import httpx
import structlog

from claude_plugins.errors import FetchError
from claude_plugins.targets import normalize_github_path, tarball_template

log = structlog.get_logger()

FETCH_TIMEOUT = 120.0
DOWNLOAD_ATTEMPTS = 3


# =============================================================================
# GitHub API Helpers
# =============================================================================

def get_github_token(cli_token: Optional[str] = None) -> Optional[str]:
    """Return GitHub token from CLI arg, GH_TOKEN, or GITHUB_TOKEN env var."""
    token = (cli_token or os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()
    return token if token else None


def get_github_auth_headers(cli_token: Optional[str] = None) -> Dict[str, str]:
    """Return Authorization header dict if token exists."""
    token = get_github_token(cli_token)
    return {"Authorization": f"Bearer {token}"} if token else {}


def get_authenticated_git_url(url: str, token: Optional[str] = None) -> str:
    """Embed a GitHub token in an HTTPS clone URL when one is available.

    Helps with rate limits and private repos. Never log the result.
    """
    token = get_github_token(token)
    if not token:
        return url

    if url.startswith("https://github.com/"):
        return url.replace("https://github.com/", f"https://{token}@github.com/")
    return url


def parse_template(template: str) -> Tuple[str, str, str, str]:
    """Split `gh:owner/repo[/subdir][#ref]` into (owner, repo, subdir, ref).

    Without an explicit ref the archive of `main` is fetched.
    """
    body = template[3:] if template.startswith("gh:") else template
    body, _, ref = body.partition("#")
    parts = [p for p in body.split("/") if p]
    if len(parts) < 2:
        raise FetchError(f"Invalid download template: {template}")
    return parts[0], parts[1], "/".join(parts[2:]), ref or "main"


def _extract_subdir(archive: Path, subdir: str, target: Path) -> int:
    """Extract `subdir` of a GitHub archive into `target`. Returns files written.

    GitHub archives wrap everything in a single `<repo>-<ref>/` directory,
    which is dropped. Links and paths escaping the target are skipped.
    """
    wanted = PurePosixPath(subdir).parts if subdir else ()
    written = 0
    matched = False

    with tarfile.open(archive, "r:gz") as tar:
        for member in tar.getmembers():
            parts = PurePosixPath(member.name).parts[1:]
            if parts[: len(wanted)] != wanted:
                continue
            matched = True
            rel = parts[len(wanted):]
            if not rel or ".." in rel:
                continue

            dest = target.joinpath(*rel)
            if member.isdir():
                dest.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                dest.parent.mkdir(parents=True, exist_ok=True)
                source = tar.extractfile(member)
                if source is None:
                    continue
                with source, open(dest, "wb") as out:
                    shutil.copyfileobj(source, out)
                if member.mode & 0o111:
                    dest.chmod(0o755)
                written += 1

    if not matched:
        raise FetchError(f"Path '{subdir}' not found in repository archive")
    return written


class Fetcher:
    """Runs git and downloads archives for the installers.

    Example:
        fetcher = Fetcher()
        await fetcher.clone("https://github.com/owner/repo.git", Path("/tmp/repo"))
        await fetcher.download("https://github.com/owner/repo/tree/main/skills/x", target)
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        timeout: float = FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.github_token = github_token
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    async def _run_git(self, args: List[str], cwd: Optional[Path] = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FetchError("git is not installed or not on PATH") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise FetchError(f"git {args[0]} timed out after {self.timeout:.0f}s")

        if proc.returncode != 0:
            raise FetchError(f"git {args[0]} failed: {stderr.decode(errors='replace').strip()[:200]}")
        return stdout.decode(errors="replace")

    async def clone(self, url: str, destination: Path, ref: Optional[str] = None) -> None:
        """Shallow-clone `url` into `destination`.

        Raises:
            FetchError: git is missing, the clone failed or timed out
        """
        if destination.exists():
            log.warning("clone_destination_exists", destination=str(destination))
            return

        args = ["clone", "--depth", "1"]
        if ref:
            args += ["--branch", ref]
        args += [get_authenticated_git_url(url, self.github_token), str(destination)]

        log.debug("git_clone", url=url, destination=str(destination), ref=ref)
        try:
            await self._run_git(args)
        except FetchError:
            shutil.rmtree(destination, ignore_errors=True)
            raise

    async def pull(self, repo_path: Path) -> None:
        """Fast-forward an existing checkout."""
        if not repo_path.exists():
            raise FetchError(f"Repository {repo_path} does not exist")
        await self._run_git(["pull", "--ff-only"], cwd=repo_path)

    async def is_git_repo(self, repo_path: Path) -> bool:
        try:
            await self._run_git(["rev-parse", "--git-dir"], cwd=repo_path)
        except (FetchError, OSError):
            return False
        return True

    async def _download_archive(self, owner: str, repo: str, ref: str, archive: Path) -> None:
        url = f"https://github.com/{owner}/{repo}/archive/{ref}.tar.gz"
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self.timeout,
            follow_redirects=True,
            headers=get_github_auth_headers(self.github_token),
        ) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchError(f"GET {url} returned {response.status_code}")
                async with aiofiles.open(archive, "wb") as out:
                    async for chunk in response.aiter_bytes():
                        await out.write(chunk)

    async def _download_once(self, template: str, target: Path) -> None:
        owner, repo, subdir, ref = parse_template(template)
        target.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix=".download-", dir=target.parent) as tmp:
            staging = Path(tmp) / "content"
            archive = Path(tmp) / "archive.tar.gz"
            staging.mkdir()

            await asyncio.wait_for(
                self._download_archive(owner, repo, ref, archive), timeout=self.timeout
            )
            try:
                await asyncio.to_thread(_extract_subdir, archive, subdir, staging)
            except tarfile.TarError as e:
                raise FetchError(f"Corrupt archive for {template}: {e}") from e

            if target.exists():
                shutil.rmtree(target)
            shutil.move(str(staging), str(target))

    async def download(self, source_url: str, target: Path, retries: int = DOWNLOAD_ATTEMPTS) -> None:
        """Download a GitHub directory (tree URL or `owner/repo` path) into `target`.

        Existing content at `target` is replaced. Retries with 1s, 2s, ...
        backoff between attempts.

        Raises:
            FetchError: every attempt failed
        """
        path, branch = normalize_github_path(source_url)
        template = tarball_template(path, branch)
        last_error: Optional[BaseException] = None

        for attempt in range(1, retries + 1):
            try:
                await self._download_once(template, target)
                return
            except (FetchError, httpx.HTTPError, asyncio.TimeoutError, OSError) as e:
                last_error = e
                log.debug("download_retry", template=template, attempt=attempt, error=str(e))
                if attempt < retries:
                    await self._sleep(2 ** (attempt - 1))

        raise FetchError(f"Download failed after {retries} attempts: {last_error}")
