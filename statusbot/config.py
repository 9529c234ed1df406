import enum
import json
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# === USER CONFIG (edit me) ===
# Quick setup:
# 1) Put DISCORD_TOKEN and GUILD_ID in .env (or the environment)
# 2) Describe your servers in config/servers.json
# 3) (Optional) Tweak UPDATE_INTERVAL_SECONDS and the channel names below

CATEGORY_NAME = "📶│MONITORING"
TEXT_CHANNEL_NAME = "🛰️ server-status"

# How often to run a reconciliation pass (seconds, measured from pass start)
UPDATE_INTERVAL_SECONDS = 60

# Pause between servers inside one pass to stay under Discord rate limits
SERVER_PACING_SECONDS = 1.0

# Longest Retry-After the Discord client will sleep through; longer waits
# (e.g. the per-channel rename limit) skip that call for this pass
MAX_RATE_LIMIT_WAIT = 5.0

DEFAULT_CONFIG_PATH = os.path.join("config", "servers.json")
DEFAULT_DATA_PATH = os.path.join("data", "messages.json")

DEFAULT_MAX_PLAYERS = 20
PLAYER_LIST_LIMIT = 20        # roster entries shown in a details embed
LABEL_LIMIT = 100             # Discord hard cap on channel names
PURGE_SCAN_LIMIT = 50         # newest messages inspected per purge; older strays are left alone

# Probe knobs (timeouts in seconds)
A2S_TIMEOUT = 3.0
A2S_ATTEMPTS = 3
HTTP_TIMEOUT = 5.0
HTTP_RETRIES = 2
MINECRAFT_TIMEOUT = 5.0
MINECRAFT_ATTEMPTS = 3

# Map preview images for process-query servers; "" disables thumbnails
MAP_THUMBNAIL_URL = "https://dev.novanautilus.net/images/{map}.jpg"

# Reserved identity keys
PROJECT_INFO_KEY = "project_info_message"
TEXT_CHANNEL_KEY = "textChannelId"
CATEGORY_KEY = "categoryId"
VOICE_KEY_PREFIX = "voice:"


# === INTERNAL ===

class ServerKind(enum.Enum):
    PROCESS_QUERY = "process_query"
    HTTP_STATUS_API = "http_status_api"
    GAME_QUERY = "game_query"


_KIND_ALIASES = {
    "garrysmod": ServerKind.PROCESS_QUERY,
    "gmod": ServerKind.PROCESS_QUERY,
    "a2s": ServerKind.PROCESS_QUERY,
    "source": ServerKind.PROCESS_QUERY,
    "scp": ServerKind.HTTP_STATUS_API,
    "http": ServerKind.HTTP_STATUS_API,
    "minecraft": ServerKind.GAME_QUERY,
}


def parse_kind(value) -> ServerKind:
    raw = str(value or "").strip().lower()
    if raw in _KIND_ALIASES:
        return _KIND_ALIASES[raw]
    try:
        return ServerKind(raw)
    except ValueError:
        raise ConfigurationError(f"Unknown server type: {value!r}") from None


@dataclass(frozen=True)
class ServerConfig:
    name: str
    kind: ServerKind
    host: str
    port: int
    connect_url: str = ""
    display_max_players: int = DEFAULT_MAX_PLAYERS
    status_url: str = ""
    description: str = ""

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ProjectInfo:
    title: str
    description: str = ""
    url: str = ""
    thumbnail_url: str = ""
    footer: str = ""
    color: int = 0x5865F2


@dataclass(frozen=True)
class Settings:
    token: str
    guild_id: str
    config_path: str = DEFAULT_CONFIG_PATH
    data_path: str = DEFAULT_DATA_PATH
    interval: float = UPDATE_INTERVAL_SECONDS
    debug_log: bool = False


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_file: str | None = None) -> Settings:
    """Read credentials and paths from the environment (.env honoured)."""
    load_dotenv(env_file)
    token = (os.getenv("DISCORD_TOKEN") or "").strip()
    guild_id = (os.getenv("GUILD_ID") or "").strip()
    missing = [n for n, v in (("DISCORD_TOKEN", token), ("GUILD_ID", guild_id)) if not v]
    if missing:
        raise ConfigurationError(f"Missing configuration for: {', '.join(missing)}")

    interval_raw = os.getenv("STATUSBOT_INTERVAL", "").strip()
    try:
        interval = float(interval_raw) if interval_raw else float(UPDATE_INTERVAL_SECONDS)
    except ValueError:
        raise ConfigurationError(f"STATUSBOT_INTERVAL must be a number, got {interval_raw!r}") from None
    if interval <= 0:
        raise ConfigurationError("STATUSBOT_INTERVAL must be positive")

    return Settings(
        token=token,
        guild_id=guild_id,
        config_path=os.getenv("STATUSBOT_CONFIG", DEFAULT_CONFIG_PATH),
        data_path=os.getenv("STATUSBOT_DATA", DEFAULT_DATA_PATH),
        interval=interval,
        debug_log=_truthy(os.getenv("STATUSBOT_DEBUG_LOG")),
    )


# === servers.json ===

def _to_int(value, field: str, name: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"Server {name!r}: {field} must be an integer, got {value!r}") from None


def parse_server(entry: dict) -> ServerConfig:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Server entries must be objects, got {type(entry).__name__}")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ConfigurationError("Server entry without a name")
    kind = parse_kind(entry.get("kind") or entry.get("type"))
    host = str(entry.get("host") or entry.get("ip") or "").strip()
    status_url = str(entry.get("status_url") or "").strip()
    if kind is ServerKind.HTTP_STATUS_API and not status_url:
        raise ConfigurationError(f"Server {name!r}: status_url is required for {kind.value}")
    if not host and kind is not ServerKind.HTTP_STATUS_API:
        raise ConfigurationError(f"Server {name!r}: host is required")
    port = _to_int(entry.get("port", 0), "port", name)
    max_players = _to_int(entry.get("maxplayers", entry.get("max_players", DEFAULT_MAX_PLAYERS)), "maxplayers", name)
    if max_players < 0:
        raise ConfigurationError(f"Server {name!r}: maxplayers must not be negative")
    return ServerConfig(
        name=name,
        kind=kind,
        host=host,
        port=port,
        connect_url=str(entry.get("connect") or entry.get("connect_url") or "").strip(),
        display_max_players=max_players,
        status_url=status_url,
        description=str(entry.get("description") or ""),
    )


def parse_project_info(raw) -> ProjectInfo | None:
    if not raw:
        return None
    if not isinstance(raw, dict) or not raw.get("title"):
        raise ConfigurationError("project_info must be an object with a title")
    color = raw.get("color", 0x5865F2)
    if isinstance(color, str):
        try:
            color = int(color.lstrip("#"), 16)
        except ValueError:
            raise ConfigurationError(f"project_info.color is not a hex colour: {color!r}") from None
    return ProjectInfo(
        title=str(raw["title"]),
        description=str(raw.get("description") or ""),
        url=str(raw.get("url") or ""),
        thumbnail_url=str(raw.get("thumbnail_url") or ""),
        footer=str(raw.get("footer") or ""),
        color=int(color),
    )


def order_servers(servers: list[ServerConfig], order: list[str] | None) -> list[ServerConfig]:
    """Apply the desired display order; unknown names are logged and skipped."""
    seen = set()
    for srv in servers:
        if srv.name in seen:
            raise ConfigurationError(f"Duplicate server name in config: {srv.name!r}")
        seen.add(srv.name)

    if order is None:
        return list(servers)

    by_name = {s.name: s for s in servers}
    ordered = []
    for name in order:
        srv = by_name.get(name)
        if srv is None:
            logger.error("[ERROR] Server %s not found in configuration!", name)
            continue
        if srv in ordered:
            logger.warning("[WARN] Server %s listed twice in order; keeping the first.", name)
            continue
        ordered.append(srv)
    return ordered


def load_servers(path: str) -> tuple[list[ServerConfig], ProjectInfo | None]:
    """Load servers.json. Returns the servers in display order and the optional project info."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"{path} not found") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}") from None

    order = None
    project_info = None
    if isinstance(raw, dict):
        entries = raw.get("servers")
        order = raw.get("order")
        if order is not None and not isinstance(order, list):
            raise ConfigurationError("'order' must be a list of server names")
        project_info = parse_project_info(raw.get("project_info"))
    else:
        entries = raw
    if not isinstance(entries, list):
        raise ConfigurationError(f"{path} must hold a list of servers")

    servers = order_servers([parse_server(e) for e in entries], order)
    if not servers:
        raise ConfigurationError("No valid servers found in configuration")
    return servers, project_info
