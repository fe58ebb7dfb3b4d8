"""
GitHub API Client.

Direct REST client for api.github.com with OAuth app tokens.
GitHub OAuth app tokens don't expire.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from services.errors import ProviderAPIError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
_GITHUB_API_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [1, 2, 4]


class GitHubAPIClient:
    """
    Direct API client for GitHub reads.

    Usage:
        client = GitHubAPIClient()
        repos = await client.list_repos(access_token="gho_...")
        issues = await client.list_issues(access_token="gho_...", full_name="acme/api")
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def _get(self, access_token: str, path: str, params: dict[str, Any]) -> Any:
        """GET with retry on 5xx, secondary rate limits and timeouts."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
        url = f"{GITHUB_API_BASE}{path}"
        last_error = None
        response = None

        for attempt in range(_MAX_RETRIES):
            wait = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
            try:
                async with httpx.AsyncClient(timeout=_GITHUB_API_TIMEOUT, transport=self._transport) as client:
                    response = await client.get(url, headers=headers, params=params)
            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"[GITHUB_API] GET {path} timed out, retrying in {wait}s")
                await asyncio.sleep(wait)
                continue

            rate_limited = (
                response.status_code == 429
                or (response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0")
            )
            if rate_limited or response.status_code >= 500:
                wait = int(response.headers.get("Retry-After", wait))
                logger.warning(f"[GITHUB_API] GET {path} returned {response.status_code}, retrying in {wait}s")
                await asyncio.sleep(wait)
                continue

            if response.status_code != 200:
                try:
                    message = response.json().get("message", response.text)
                except ValueError:
                    message = response.text
                raise ProviderAPIError("github", f"GET {path}: {message}", status=response.status_code)

            return response.json()

        if last_error:
            raise ProviderAPIError("github", f"request failed after {_MAX_RETRIES} retries: {last_error}")
        raise ProviderAPIError("github", f"GET {path} kept failing", status=response.status_code)

    async def list_repos(self, access_token: str, per_page: int = 50) -> list[dict[str, Any]]:
        """Repositories the user can access, most recently updated first."""
        return await self._get(
            access_token, "/user/repos", {"per_page": per_page, "sort": "updated"}
        )

    async def list_issues(
        self, access_token: str, full_name: str, per_page: int = 10
    ) -> list[dict[str, Any]]:
        """
        Recent issues for a repository, all states.

        GitHub returns pull requests from this endpoint too; callers filter
        on the pull_request key.
        """
        return await self._get(
            access_token,
            f"/repos/{full_name}/issues",
            {"state": "all", "per_page": per_page, "sort": "updated"},
        )

    async def list_pulls(
        self, access_token: str, full_name: str, per_page: int = 10
    ) -> list[dict[str, Any]]:
        return await self._get(
            access_token,
            f"/repos/{full_name}/pulls",
            {"state": "all", "per_page": per_page, "sort": "updated"},
        )
