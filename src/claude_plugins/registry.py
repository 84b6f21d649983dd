"""Client for the claude-plugins registry API.

The registry is treated as an oracle: lookups that fail for any reason
(non-2xx, network trouble, malformed body) resolve to None. Only transport
failures are retried; HTTP error responses are final.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx
import structlog

from claude_plugins.config import DEFAULT_REGISTRY_URL
from claude_plugins.errors import RegistryError, ValidationError
from claude_plugins.models import SearchResponse, SkillInfo, parse_model
from claude_plugins.targets import RegistrySkill

log = structlog.get_logger()

USER_AGENT = "claude-plugins/0.1.0"

REQUEST_TIMEOUT = 10.0
NOTIFY_TIMEOUT = 3.0
MAX_ATTEMPTS = 3
BASE_DELAY = 0.5


class RegistryClient:
    """Async wrapper over the registry's resolve, skills and search endpoints.

    Example:
        async with RegistryClient(config.effective_registry_url()) as registry:
            url = await registry.resolve_plugin_url("@every/compounding-engineering")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.attempts = attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=REQUEST_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transport failures with doubling delays."""
        for attempt in range(1, self.attempts):
            try:
                return await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                delay = self.base_delay * (2 ** (attempt - 1))
                log.debug(
                    "registry_retry",
                    url=url,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await self._sleep(delay)
        return await self._client.request(method, url, **kwargs)

    async def resolve_plugin_url(self, identifier: str) -> Optional[str]:
        """Resolve a plugin identifier (`@ns/name`, `ns/name`, `name`) to a git URL."""
        try:
            response = await self._request("GET", f"/api/resolve/{quote(identifier, safe='@/')}")
        except httpx.HTTPError as e:
            log.info("plugin_resolve_failed", identifier=identifier, error=str(e))
            return None

        if not response.is_success:
            log.info("plugin_not_found", identifier=identifier, status=response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            log.warning("registry_bad_response", identifier=identifier)
            return None

        git_url = data.get("gitUrl") if isinstance(data, dict) else None
        if not git_url or not isinstance(git_url, str):
            log.warning("registry_bad_response", identifier=identifier, body=data)
            return None
        return git_url

    async def resolve_skill(self, skill: RegistrySkill) -> Optional[SkillInfo]:
        """Look up a registry skill. Returns None if it is not registered."""
        path = "/api/skills/{}/{}/{}".format(
            quote(skill.owner), quote(skill.repo), quote(skill.skill_name)
        )
        try:
            response = await self._request("GET", path)
        except httpx.HTTPError as e:
            log.info("skill_resolve_failed", skill=skill.namespace, error=str(e))
            return None

        if not response.is_success:
            log.info("skill_not_found", skill=skill.namespace, status=response.status_code)
            return None

        try:
            return parse_model(SkillInfo, response.json(), "registry skill response")
        except (ValueError, ValidationError) as e:
            log.warning("registry_bad_response", skill=skill.namespace, error=str(e))
            return None

    async def search_skills(
        self,
        query: str,
        limit: int = 10,
        offset: int = 0,
        order_by: Optional[str] = None,
        order: Optional[str] = None,
    ) -> SearchResponse:
        """Search the registry. Relevance ordering unless `order_by` is given.

        Raises:
            RegistryError: the registry is unreachable or answered non-2xx
        """
        params = {"q": query, "limit": str(limit), "offset": str(offset)}
        if order_by:
            params["orderBy"] = order_by
            params["order"] = order or "desc"

        try:
            response = await self._request("GET", "/api/skills/search", params=params)
        except httpx.HTTPError as e:
            raise RegistryError(f"Search failed: {e}") from e

        if not response.is_success:
            raise RegistryError(f"Search failed: {response.status_code} {response.reason_phrase}")

        try:
            return parse_model(SearchResponse, response.json(), "search response")
        except (ValueError, ValidationError) as e:
            raise RegistryError(f"Search failed: {e}") from e

    async def track_installation(self, skill: RegistrySkill) -> None:
        """Best-effort install counter. Never raises and is never retried."""
        path = "/api/skills/{}/{}/{}/install".format(
            quote(skill.owner), quote(skill.repo), quote(skill.skill_name)
        )
        try:
            await self._client.post(path, timeout=NOTIFY_TIMEOUT)
        except httpx.HTTPError as e:
            log.debug("install_tracking_failed", skill=skill.namespace, error=str(e))
