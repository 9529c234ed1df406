import itertools

import pytest

from statusbot.config import ServerConfig, ServerKind
from statusbot.errors import ResourceMissing
from statusbot.probes import ServerSnapshot
from statusbot.publisher import DiscordPublisher
from statusbot.store import IdentityStore

GUILD_ID = "1000"
BOT_ID = "42"


class FakeDiscord:
    """In-memory stand-in for DiscordClient."""

    def __init__(self):
        self._ids = itertools.count(5000)
        self.channels = {}
        self.messages = {}
        self.calls = []
        self.fail = {}  # method name -> exception to raise

    def _next_id(self):
        return str(next(self._ids))

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    # helpers for tests
    def add_channel(self, name, channel_type, parent_id=None, overwrites=None):
        cid = self._next_id()
        self.channels[cid] = {"id": cid, "name": name, "type": channel_type,
                              "parent_id": parent_id, "permission_overwrites": overwrites or []}
        return cid

    def add_message(self, channel_id, author_id, content="x"):
        mid = self._next_id()
        self.messages.setdefault(channel_id, {})[mid] = {"id": mid, "author": {"id": author_id}, "payload": content}
        return mid

    # DiscordClient surface
    def current_user(self):
        self._record("current_user")
        return {"id": BOT_ID, "username": "statusbot"}

    def guild_channels(self, guild_id):
        self._record("guild_channels", guild_id)
        return [dict(c) for c in self.channels.values()]

    def create_channel(self, guild_id, name, channel_type, *, parent_id=None, permission_overwrites=None):
        self._record("create_channel", name, channel_type)
        cid = self.add_channel(name, channel_type, parent_id, permission_overwrites)
        return dict(self.channels[cid])

    def get_channel(self, channel_id):
        self._record("get_channel", channel_id)
        if channel_id not in self.channels:
            raise ResourceMissing(f"channel {channel_id}", status=404)
        return dict(self.channels[channel_id])

    def rename_channel(self, channel_id, name):
        self._record("rename_channel", channel_id, name)
        if channel_id not in self.channels:
            raise ResourceMissing(f"channel {channel_id}", status=404)
        self.channels[channel_id]["name"] = name
        return dict(self.channels[channel_id])

    def edit_permissions(self, channel_id, overwrite_id, *, allow, deny, overwrite_type=0):
        self._record("edit_permissions", channel_id, overwrite_id, allow, deny)
        if channel_id not in self.channels:
            raise ResourceMissing(f"channel {channel_id}", status=404)
        overwrites = [o for o in self.channels[channel_id]["permission_overwrites"] if o["id"] != overwrite_id]
        overwrites.append({"id": overwrite_id, "type": overwrite_type, "allow": str(allow), "deny": str(deny)})
        self.channels[channel_id]["permission_overwrites"] = overwrites

    def list_messages(self, channel_id, limit=50):
        self._record("list_messages", channel_id)
        return [dict(m) for m in self.messages.get(channel_id, {}).values()][:limit]

    def send_message(self, channel_id, payload):
        self._record("send_message", channel_id)
        mid = self.add_message(channel_id, BOT_ID, payload)
        return {"id": mid}

    def edit_message(self, channel_id, message_id, payload):
        self._record("edit_message", channel_id, message_id)
        if message_id not in self.messages.get(channel_id, {}):
            raise ResourceMissing(f"message {message_id}", status=404, code=10008)
        self.messages[channel_id][message_id]["payload"] = payload
        return {"id": message_id}

    def delete_message(self, channel_id, message_id):
        self._record("delete_message", channel_id, message_id)
        self.messages.get(channel_id, {}).pop(message_id, None)


class StaticProbe:
    """Returns canned snapshots (or raises) per server name."""

    def __init__(self, snapshots=None, raises=None):
        self.snapshots = snapshots or {}
        self.raises = raises or {}
        self.calls = []

    def probe(self, config):
        self.calls.append(config.name)
        if config.name in self.raises:
            raise self.raises[config.name]
        snap = self.snapshots.get(config.name)
        if snap is None:
            return ServerSnapshot(online=True, display_name=config.name, player_count=3, max_players=20,
                                  map_name="gm_metro", roster=("alice", "bob", "carol"))
        return snap


@pytest.fixture
def fake_discord():
    return FakeDiscord()


@pytest.fixture
def store(tmp_path):
    return IdentityStore.load(str(tmp_path / "data" / "messages.json"))


@pytest.fixture
def text_channel(fake_discord, store):
    cid = fake_discord.add_channel("status", 0)
    store.remember("textChannelId", cid)
    return cid


@pytest.fixture
def publisher(fake_discord, store, text_channel):
    return DiscordPublisher(fake_discord, store, guild_id=GUILD_ID, bot_user_id=BOT_ID,
                            message_channel_id=text_channel)


@pytest.fixture
def servers():
    return [
        ServerConfig(name="Metro #1", kind=ServerKind.PROCESS_QUERY, host="10.0.0.1", port=27015,
                     connect_url="steam://connect/10.0.0.1:27015"),
        ServerConfig(name="SCP", kind=ServerKind.HTTP_STATUS_API, host="10.0.0.2", port=7777,
                     status_url="http://status.invalid/scp", display_max_players=30),
        ServerConfig(name="Mine", kind=ServerKind.GAME_QUERY, host="10.0.0.3", port=25565),
    ]


@pytest.fixture
def static_probe():
    return StaticProbe
