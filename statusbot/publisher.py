import logging
from datetime import datetime, timezone
from typing import Protocol

from . import config as cfg
from .discord_api import CONNECT, GUILD_VOICE, SPEAK, VIEW_CHANNEL, DiscordClient
from .errors import DiscordApiError, ResourceMissing
from .render import RichContent, truncate
from .store import IdentityStore

logger = logging.getLogger(__name__)

EMBED_DESC_LIMIT = 4096
EMBED_FIELD_LIMIT = 1024

# Button component types / styles
ACTION_ROW = 1
BUTTON = 2
BUTTON_STYLE_LINK = 5


class ResourceSync(Protocol):
    """What the Reconciler needs from the chat platform."""

    def sync_label_resource(self, container_id: str, desired_label: str) -> bool: ...

    def sync_label_access(self, container_id: str, online: bool) -> bool: ...

    def create_label_resource(self, parent_id: str | None, label: str) -> str: ...

    def sync_rich_resource(self, key: str, content: RichContent) -> str: ...

    def purge_unmanaged(self, container_id: str, known_ids: set) -> int: ...


def render_payload(content: RichContent) -> dict:
    """RichContent -> Discord message payload (one embed plus an optional link button)."""
    embed = {
        "title": content.title,
        "color": content.color,
    }
    if content.description:
        embed["description"] = truncate(content.description, EMBED_DESC_LIMIT)
    if content.fields:
        embed["fields"] = [
            {"name": f.name, "value": truncate(f.value, EMBED_FIELD_LIMIT) or "\u200b", "inline": f.inline}
            for f in content.fields
        ]
    if content.thumbnail_url:
        embed["thumbnail"] = {"url": content.thumbnail_url}
    if content.footer:
        embed["footer"] = {"text": content.footer}
    if content.timestamp:
        embed["timestamp"] = datetime.now(timezone.utc).isoformat()

    components = []
    if content.button_url:
        components.append({
            "type": ACTION_ROW,
            "components": [{
                "type": BUTTON,
                "style": BUTTON_STYLE_LINK,
                "label": content.button_label or "Connect",
                "url": content.button_url,
            }],
        })
    return {"embeds": [embed], "components": components, "allowed_mentions": {"parse": []}}


def access_overwrite(online: bool) -> tuple:
    """(allow, deny) for @everyone on a status voice channel."""
    if online:
        return VIEW_CHANNEL | CONNECT, SPEAK
    return VIEW_CHANNEL, CONNECT | SPEAK


class DiscordPublisher:
    """Idempotent create-or-update against Discord.

    Label resources are voice channels whose name carries the status. Rich
    resources are embed messages in one text channel, tracked by logical key
    through the IdentityStore.
    """

    def __init__(self, client: DiscordClient, store: IdentityStore, *, guild_id: str,
                 bot_user_id: str, message_channel_id: str | None = None):
        self.client = client
        self.store = store
        self.guild_id = str(guild_id)
        self.everyone_role_id = str(guild_id)  # @everyone shares the guild's id
        self.bot_user_id = str(bot_user_id)
        self.message_channel_id = message_channel_id

    # === Label resources ===

    def sync_label_resource(self, container_id: str, desired_label: str) -> bool:
        label = truncate(desired_label, cfg.LABEL_LIMIT)
        try:
            channel = self.client.get_channel(container_id)
            if channel.get("name") == label:
                return True
            self.client.rename_channel(container_id, label)
            logger.debug("[DEBUG] Renamed channel %s to %r", container_id, label)
            return True
        except ResourceMissing:
            raise
        except DiscordApiError as e:
            logger.warning("[WARN] Failed to rename channel %s: %s", container_id, e)
            return False

    def sync_label_access(self, container_id: str, online: bool) -> bool:
        allow, deny = access_overwrite(online)
        try:
            channel = self.client.get_channel(container_id)
            for ow in channel.get("permission_overwrites") or []:
                if str(ow.get("id")) == self.everyone_role_id:
                    if int(ow.get("allow", 0)) == allow and int(ow.get("deny", 0)) == deny:
                        return True
                    break
            self.client.edit_permissions(container_id, self.everyone_role_id, allow=allow, deny=deny)
            return True
        except ResourceMissing:
            raise
        except DiscordApiError as e:
            logger.warning("[WARN] Failed to update permissions on channel %s: %s", container_id, e)
            return False

    def create_label_resource(self, parent_id: str | None, label: str) -> str:
        hidden = [{
            "id": self.everyone_role_id,
            "type": 0,
            "allow": "0",
            "deny": str(VIEW_CHANNEL | CONNECT | SPEAK),
        }]
        channel = self.client.create_channel(
            self.guild_id, truncate(label, cfg.LABEL_LIMIT), GUILD_VOICE,
            parent_id=parent_id, permission_overwrites=hidden,
        )
        logger.info("[INIT] Created voice channel %s (%s)", channel["id"], label)
        return str(channel["id"])

    # === Rich resources ===

    def sync_rich_resource(self, key: str, content: RichContent) -> str:
        """Edit the message stored under key, or create one. Returns the live message id."""
        if not self.message_channel_id:
            raise DiscordApiError("No status text channel configured")
        payload = render_payload(content)
        existing = self.store.lookup(key)
        if existing:
            try:
                self.client.edit_message(self.message_channel_id, existing, payload)
                return existing
            except ResourceMissing:
                logger.info("[INFO] Message %s for %s is gone; recreating.", existing, key)
                self.store.forget(key)

        sent = self.client.send_message(self.message_channel_id, payload)
        new_id = str(sent["id"])
        self.store.remember(key, new_id)
        logger.info("[INFO] Posted message %s for %s", new_id, key)
        return new_id

    # === Cleanup ===

    def purge_unmanaged(self, container_id: str, known_ids: set) -> int:
        """Delete our own messages in container_id that nothing references any more."""
        known = {str(i) for i in known_ids}
        try:
            messages = self.client.list_messages(container_id, limit=cfg.PURGE_SCAN_LIMIT)
        except DiscordApiError as e:
            logger.warning("[WARN] Could not list messages in %s: %s", container_id, e)
            return 0

        deleted = 0
        for msg in messages or []:
            msg_id = str(msg.get("id"))
            author = str((msg.get("author") or {}).get("id"))
            if msg_id in known or author != self.bot_user_id:
                continue
            try:
                self.client.delete_message(container_id, msg_id)
                deleted += 1
                logger.info("[CLEANUP] Deleted stray message %s", msg_id)
            except ResourceMissing:
                logger.info("[CLEANUP] Message %s already gone", msg_id)
            except DiscordApiError as e:
                logger.warning("[WARN] Failed to delete message %s: %s", msg_id, e)
        return deleted
