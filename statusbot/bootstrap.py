"""Find or create the category, per-server voice channels and the status text channel.

Runs once at startup, before the scheduler. Every id it settles on goes into
the IdentityStore so later passes (and restarts) reuse the same channels.
"""

import logging

from . import config as cfg
from .discord_api import GUILD_CATEGORY, GUILD_TEXT, GUILD_VOICE, SEND_MESSAGES, VIEW_CHANNEL
from .errors import DiscordApiError
from .reconciler import voice_key
from .render import OFFLINE_GLYPH

logger = logging.getLogger(__name__)


def _remembered(store, key: str, channels_by_id: dict, channel_type: int) -> dict | None:
    channel_id = store.lookup(key)
    if not channel_id:
        return None
    channel = channels_by_id.get(channel_id)
    if channel is not None and channel.get("type") == channel_type:
        return channel
    logger.info("[INIT] Remembered channel %s for %s no longer exists; forgetting.", channel_id, key)
    store.forget(key)
    return None


def ensure_category(client, store, guild_id: str, channels_by_id: dict) -> str:
    channel = _remembered(store, cfg.CATEGORY_KEY, channels_by_id, GUILD_CATEGORY)
    if channel is None:
        channel = next((c for c in channels_by_id.values()
                        if c.get("type") == GUILD_CATEGORY and c.get("name") == cfg.CATEGORY_NAME), None)
    if channel is None:
        channel = client.create_channel(guild_id, cfg.CATEGORY_NAME, GUILD_CATEGORY, permission_overwrites=[{
            "id": str(guild_id), "type": 0, "allow": str(VIEW_CHANNEL), "deny": "0",
        }])
        logger.info("[INIT] Created category %s", channel["id"])
    category_id = str(channel["id"])
    if store.lookup(cfg.CATEGORY_KEY) != category_id:
        store.remember(cfg.CATEGORY_KEY, category_id)
    return category_id


def _is_label_for(channel: dict, server_name: str) -> bool:
    """True when the channel name has our label shape for server_name: "<glyph> <name> (...)"."""
    _, _, rest = (channel.get("name") or "").partition(" ")
    return rest.startswith(f"{server_name} (")


def ensure_voice_channels(publisher, store, servers, category_id: str, channels_by_id: dict) -> None:
    claimed = set()
    pending = []
    for srv in servers:
        channel = _remembered(store, voice_key(srv.name), channels_by_id, GUILD_VOICE)
        if channel is None:
            pending.append(srv)
        else:
            claimed.add(str(channel["id"]))

    for srv in pending:
        key = voice_key(srv.name)
        adopted = next((c for c in channels_by_id.values()
                        if c.get("type") == GUILD_VOICE
                        and str(c.get("parent_id")) == category_id
                        and str(c["id"]) not in claimed
                        and _is_label_for(c, srv.name)), None)
        if adopted is not None:
            logger.info("[INIT] Reusing voice channel %s for %s", adopted["id"], srv.name)
            claimed.add(str(adopted["id"]))
            store.remember(key, str(adopted["id"]))
            continue
        try:
            channel_id = publisher.create_label_resource(category_id, f"{OFFLINE_GLYPH} {srv.name} (Offline)")
        except DiscordApiError as e:
            logger.error("[ERROR] Failed to create voice channel for %s: %s", srv.name, e)
            continue
        claimed.add(channel_id)
        store.remember(key, channel_id)


def ensure_text_channel(client, store, guild_id: str, category_id: str, channels_by_id: dict) -> str:
    channel = _remembered(store, cfg.TEXT_CHANNEL_KEY, channels_by_id, GUILD_TEXT)
    if channel is None:
        channel = client.create_channel(
            guild_id, cfg.TEXT_CHANNEL_NAME, GUILD_TEXT, parent_id=category_id,
            permission_overwrites=[{
                "id": str(guild_id), "type": 0, "allow": str(VIEW_CHANNEL), "deny": str(SEND_MESSAGES),
            }],
        )
        logger.info("[INIT] Created status text channel %s", channel["id"])
        store.remember(cfg.TEXT_CHANNEL_KEY, str(channel["id"]))
    return str(channel["id"])


def setup_channels(client, publisher, store, guild_id: str, servers) -> str:
    """Make sure every container exists. Returns the status text channel id."""
    channels = client.guild_channels(guild_id)
    channels_by_id = {str(c["id"]): c for c in channels}
    category_id = ensure_category(client, store, guild_id, channels_by_id)
    ensure_voice_channels(publisher, store, servers, category_id, channels_by_id)
    return ensure_text_channel(client, store, guild_id, category_id, channels_by_id)
