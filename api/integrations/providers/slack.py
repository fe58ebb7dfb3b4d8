"""
Slack provider adapter.

Sync reads the last 24 hours of every channel the bot is a member of.
Webhook events (new/edited messages, check-mark reactions) are handled by
handle_event, called from routes/webhooks.py after the request is acked.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from integrations.core.slack_client import SlackAPIClient
from integrations.core.types import IntegrationProvider, MemoryRecord, MemoryType
from integrations.providers.base import ProviderAdapter, SyncContext
from services.errors import OAuthExchangeError

logger = logging.getLogger(__name__)

DECISION_KEYWORDS = [
    "decided", "decision", "we will", "let's go with", "agreed",
    "conclusion", "final", "approved", "confirmed",
]

ACTION_KEYWORDS = [
    "todo", "action item", "will do", "assigned to", "@",
    "by end of", "deadline", "due", "task", "need to",
]

# Reactions that promote a message to a decision
DECISION_REACTIONS = {"white_check_mark", "heavy_check_mark"}

SYNC_WINDOW = timedelta(hours=24)


def classify_message(text: str) -> MemoryType:
    """Keyword classifier: decision keywords win over action keywords."""
    lower = text.lower()
    if any(keyword in lower for keyword in DECISION_KEYWORDS):
        return MemoryType.DECISION
    if any(keyword in lower for keyword in ACTION_KEYWORDS):
        return MemoryType.ACTION_ITEM
    return MemoryType.DISCUSSION


def build_content(message: dict[str, Any]) -> tuple[str, list[dict[str, Any]]]:
    """
    Message text plus annotations for files and attachments.

    Returns:
        (content, file_infos)
    """
    content = message.get("text") or ""
    files = []

    for f in message.get("files") or []:
        mimetype = f.get("mimetype") or ""
        info = {
            "name": f.get("name"),
            "title": f.get("title"),
            "mimetype": mimetype,
            "size": f.get("size"),
            "url": f.get("url_private") or f.get("permalink"),
            "thumb": f.get("thumb_360") or f.get("thumb_80"),
            "is_image": mimetype.startswith("image/"),
        }
        files.append(info)
        content += f"\n[File: {f.get('name')} ({mimetype})]"
        if info["is_image"]:
            content += f'\n[Image description: User shared an image named "{f.get("name")}"]'

    for attachment in message.get("attachments") or []:
        title = attachment.get("title")
        text = attachment.get("text")
        if title or text:
            content += f"\n[Attachment: {title or 'Link'}]"
            if text:
                content += f"\n{text}"

    return content, files


class SlackAdapter(ProviderAdapter):

    def __init__(self, client: Optional[SlackAPIClient] = None):
        self.client = client or SlackAPIClient()

    @property
    def provider(self) -> IntegrationProvider:
        return IntegrationProvider.SLACK

    def authorize_params(self, state: str) -> dict[str, Any]:
        config = self.oauth_config
        return {
            "client_id": config.client_id,
            "scope": config.scope,
            "state": state,
            "redirect_uri": config.redirect_uri,
        }

    async def handle_callback(self, code: str) -> dict[str, Any]:
        config = self.oauth_config
        data = await self._post_token_request(
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "redirect_uri": config.redirect_uri,
            },
        )
        if not data.get("ok"):
            raise OAuthExchangeError("slack", data.get("error") or "OAuth failed")

        team = data.get("team") or {}
        return {
            "access_token": data["access_token"],
            "scope": data.get("scope"),
            "team_id": team.get("id"),
            "team_name": team.get("name"),
            "bot_user_id": data.get("bot_user_id"),
        }

    def settings_from_credentials(self, credentials: dict[str, Any]) -> dict[str, Any]:
        return {
            "slack_team_id": credentials.get("team_id"),
            "workspace_name": credentials.get("team_name"),
        }

    async def _enrich(
        self,
        bot_token: str,
        message: dict[str, Any],
        channel_id: str,
        channel_name: str,
        workspace_id: Optional[str],
        authors: dict[str, dict[str, str]],
    ) -> dict[str, Any]:
        user_id = message.get("user")
        if user_id and user_id not in authors:
            authors[user_id] = await self.client.get_user(bot_token, user_id)
        return {
            **message,
            "channel": channel_id,
            "channel_name": channel_name,
            "workspace_id": workspace_id,
            "author": authors.get(user_id) if user_id else None,
        }

    async def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        bot_token = credentials["access_token"]
        workspace_id = credentials.get("team_id")
        oldest = str((datetime.now(timezone.utc) - SYNC_WINDOW).timestamp())
        authors: dict[str, dict[str, str]] = {}

        channels = await self.client.list_channels(bot_token)
        member_channels = [ch for ch in channels if ch.get("is_member")]
        logger.info(f"[SLACK] Syncing {len(member_channels)} channels")

        for channel in member_channels:
            try:
                messages = await self.client.get_channel_history(
                    bot_token, channel["id"], oldest=oldest
                )
            except Exception as e:
                logger.error(f"[SLACK] Failed to sync channel {channel.get('name')}: {e}")
                continue

            for message in messages:
                if message.get("type") != "message" or message.get("subtype"):
                    continue
                yield await self._enrich(
                    bot_token, message, channel["id"], channel.get("name") or channel["id"],
                    workspace_id, authors,
                )

    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        ts = item.get("ts")
        channel = item.get("channel")
        if not ts or not channel:
            return None

        content, files = build_content(item)
        if not content.strip():
            return None

        source_url = None
        if item.get("workspace_id"):
            source_url = (
                f"https://{item['workspace_id']}.slack.com/archives/"
                f"{channel}/p{ts.replace('.', '')}"
            )

        author = item.get("author")
        if author is None and item.get("user"):
            author = {"id": item["user"], "name": "Unknown User"}

        return MemoryRecord(
            team_id=team_id,
            content=content,
            type=classify_message(content),
            source="slack",
            source_id=f"{channel}_{ts}",
            source_url=source_url,
            author=author,
            timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc),
            metadata={
                "channel": item.get("channel_name") or channel,
                "thread_ts": item.get("thread_ts"),
                "has_files": bool(files),
                "files": files,
                "original_text": item.get("text"),
            },
        )

    # =========================================================================
    # Events API
    # =========================================================================

    async def handle_event(
        self,
        event: dict[str, Any],
        integration: dict[str, Any],
        context: SyncContext,
    ) -> None:
        """
        Process one Events API event for a connected team.

        Errors are logged; the event has already been acknowledged.
        """
        team_id = integration["team_id"]
        try:
            credentials = context.credential_store.decrypt(integration["credentials"])
            event_type = event.get("type")

            if event_type == "message":
                subtype = event.get("subtype")
                if subtype == "message_changed":
                    message = {**(event.get("message") or {}), "channel": event.get("channel")}
                elif not subtype:
                    message = event
                else:
                    return
                await self._process_message(team_id, message, credentials, context)

            elif event_type == "reaction_added" and event.get("reaction") in DECISION_REACTIONS:
                item = event.get("item") or {}
                await self._mark_as_decision(team_id, item, credentials, context)

        except Exception as e:
            logger.error(f"[SLACK] Event handling error for team {team_id[:8]}: {e}")

    async def _process_message(
        self,
        team_id: str,
        message: dict[str, Any],
        credentials: dict[str, Any],
        context: SyncContext,
    ) -> None:
        bot_token = credentials["access_token"]
        channel_id = message.get("channel")
        channel_name = await self.client.get_channel_name(bot_token, channel_id)
        item = await self._enrich(
            bot_token, message, channel_id, channel_name, credentials.get("team_id"), {}
        )
        record = self.to_memory(team_id, item)
        if record is None:
            return
        _, created = await context.memory_store.upsert_memory(record)
        logger.info(
            f"[SLACK] {'Created' if created else 'Updated'} memory {record.source_id} "
            f"for team {team_id[:8]}"
        )

    async def _mark_as_decision(
        self,
        team_id: str,
        item: dict[str, Any],
        credentials: dict[str, Any],
        context: SyncContext,
    ) -> None:
        channel_id = item.get("channel")
        ts = item.get("ts")
        if not channel_id or not ts:
            return
        message = await self.client.get_message(credentials["access_token"], channel_id, ts)
        if message is None:
            return
        updated = context.memory_store.mark_as_decision(team_id, f"{channel_id}_{ts}", source="slack")
        logger.info(f"[SLACK] Marked {updated} memories as decision for {channel_id}_{ts}")
