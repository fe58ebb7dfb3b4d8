"""
GitHub provider adapter.

Sync walks recently updated repositories; each non-archived repo yields
a summary document plus its recent issues (discussion) and pull requests
(decision), controlled by the syncIssues / syncPRs settings.
"""

import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from integrations.core.github_client import GitHubAPIClient
from integrations.core.types import IntegrationProvider, MemoryRecord, MemoryType
from integrations.providers.base import DEFAULT_PAGE_SIZE, ProviderAdapter, parse_timestamp
from services.errors import OAuthExchangeError

logger = logging.getLogger(__name__)

RECENT_ITEMS_PER_REPO = 10

DEFAULT_SETTINGS = {
    "repos": [],
    "syncPRs": True,
    "syncIssues": True,
    "syncCommits": False,
}


def repository_content(repo: dict[str, Any]) -> Optional[str]:
    content = f"Repository: {repo.get('full_name')}"
    if repo.get("description"):
        content += f"\n\nDescription: {repo['description']}"
    if repo.get("language"):
        content += f"\n\nPrimary Language: {repo['language']}"
    if repo.get("topics"):
        content += f"\n\nTopics: {', '.join(repo['topics'])}"
    content = content.strip()
    return content if len(content) > 20 else None


class GitHubAdapter(ProviderAdapter):

    def __init__(self, client: Optional[GitHubAPIClient] = None):
        self.client = client or GitHubAPIClient()

    @property
    def provider(self) -> IntegrationProvider:
        return IntegrationProvider.GITHUB

    def authorize_params(self, state: str) -> dict[str, Any]:
        config = self.oauth_config
        return {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scope,
            "state": state,
        }

    async def handle_callback(self, code: str) -> dict[str, Any]:
        config = self.oauth_config
        data = await self._post_token_request(
            headers={"Accept": "application/json"},
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
            },
        )
        if data.get("error") or not data.get("access_token"):
            raise OAuthExchangeError("github", data.get("error_description") or data.get("error") or data)

        return {
            "access_token": data["access_token"],
            "token_type": data.get("token_type"),
            "scope": data.get("scope"),
        }

    def settings_from_credentials(self, credentials: dict[str, Any]) -> dict[str, Any]:
        return dict(DEFAULT_SETTINGS)

    async def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        access_token = credentials["access_token"]
        settings = {**DEFAULT_SETTINGS, **(integration.get("settings") or {})}
        only_repos = set(settings.get("repos") or [])

        repos = await self.client.list_repos(access_token, per_page=DEFAULT_PAGE_SIZE)
        for repo in repos:
            if repo.get("archived"):
                continue
            if only_repos and repo.get("full_name") not in only_repos:
                continue

            yield {"kind": "repo", **repo}
            full_name = repo["full_name"]

            if settings.get("syncIssues"):
                try:
                    issues = await self.client.list_issues(
                        access_token, full_name, per_page=RECENT_ITEMS_PER_REPO
                    )
                except Exception as e:
                    logger.error(f"[GITHUB] Failed to sync issues for {full_name}: {e}")
                    issues = []
                for issue in issues:
                    if issue.get("pull_request"):
                        continue
                    yield {"kind": "issue", "repository": full_name, **issue}

            if settings.get("syncPRs"):
                try:
                    pulls = await self.client.list_pulls(
                        access_token, full_name, per_page=RECENT_ITEMS_PER_REPO
                    )
                except Exception as e:
                    logger.error(f"[GITHUB] Failed to sync PRs for {full_name}: {e}")
                    pulls = []
                for pr in pulls:
                    yield {"kind": "pull", "repository": full_name, **pr}

    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        kind = item.get("kind")
        if item.get("id") is None:
            return None
        timestamp = parse_timestamp(item.get("updated_at")) or datetime.now(timezone.utc)
        login = (item.get("user") or {}).get("login")

        if kind == "repo":
            content = repository_content(item)
            if content is None:
                return None
            return MemoryRecord(
                team_id=team_id,
                content=content,
                type=MemoryType.DOCUMENT,
                source="github",
                source_id=str(item["id"]),
                source_url=item.get("html_url"),
                timestamp=timestamp,
                metadata={
                    "repositoryId": item["id"],
                    "name": item.get("name"),
                    "fullName": item.get("full_name"),
                    "language": item.get("language"),
                    "stargazersCount": item.get("stargazers_count"),
                    "forksCount": item.get("forks_count"),
                    "openIssuesCount": item.get("open_issues_count"),
                },
            )

        if kind == "issue":
            return MemoryRecord(
                team_id=team_id,
                content=f"Issue: {item.get('title')}\n\n{item.get('body') or 'No description'}",
                type=MemoryType.DISCUSSION,
                source="github",
                source_id=str(item["id"]),
                source_url=item.get("html_url"),
                author={"id": login, "name": login} if login else None,
                timestamp=timestamp,
                metadata={
                    "issueNumber": item.get("number"),
                    "state": item.get("state"),
                    "repository": item.get("repository"),
                    "author": login,
                    "labels": [label.get("name") for label in item.get("labels") or []],
                },
            )

        if kind == "pull":
            return MemoryRecord(
                team_id=team_id,
                content=f"Pull Request: {item.get('title')}\n\n{item.get('body') or 'No description'}",
                type=MemoryType.DECISION,
                source="github",
                source_id=str(item["id"]),
                source_url=item.get("html_url"),
                author={"id": login, "name": login} if login else None,
                timestamp=timestamp,
                metadata={
                    "prNumber": item.get("number"),
                    "state": item.get("state"),
                    "merged": bool(item.get("merged_at")),
                    "repository": item.get("repository"),
                    "author": login,
                    "reviewers": [r.get("login") for r in item.get("requested_reviewers") or []],
                },
            )

        return None
