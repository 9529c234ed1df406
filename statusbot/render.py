"""Desired external representation of a server: label text and details embed.

Everything here is a pure function of (ServerConfig, ServerSnapshot). The
Publisher turns RichContent into a Discord payload; nothing in this module
knows about HTTP.
"""

from dataclasses import dataclass

from . import config as cfg
from .config import ProjectInfo, ServerConfig, ServerKind
from .probes import ServerSnapshot

ONLINE_GLYPH = "🟢"
OFFLINE_GLYPH = "🔴"
TRUNCATION_MARKER = "..."

COLOR_ONLINE = 0x43B581
COLOR_OFFLINE = 0xF04747

DIVIDER = "━" * 32


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class RichContent:
    title: str
    description: str = ""
    color: int = COLOR_OFFLINE
    fields: tuple = ()
    thumbnail_url: str = ""
    footer: str = ""
    button_label: str = ""
    button_url: str = ""
    timestamp: bool = True


# === Safety utilities ===

def truncate(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Clip text to limit characters, ending with marker when clipped."""
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return marker[:limit]
    return text[: limit - len(marker)] + marker


def sanitize(name: str, limit: int = 64) -> str:
    # escape simple markdown and trim very long names
    for ch in ("\\", "`", "*", "_", "~", "|", ">"):
        name = name.replace(ch, f"\\{ch}")
    return name[:limit]


def status_glyph(online: bool) -> str:
    return ONLINE_GLYPH if online else OFFLINE_GLYPH


def players_text(snapshot: ServerSnapshot) -> str:
    if not snapshot.online:
        return "Offline"
    return f"{snapshot.player_count}/{snapshot.max_players}"


def status_label(snapshot: ServerSnapshot, limit: int = cfg.LABEL_LIMIT) -> str:
    label = f"{status_glyph(snapshot.online)} {snapshot.display_name} ({players_text(snapshot)})"
    return truncate(label, limit)


def roster_text(snapshot: ServerSnapshot, limit: int = cfg.PLAYER_LIST_LIMIT) -> str:
    if not snapshot.online or not snapshot.roster:
        return "No players online"
    shown = snapshot.roster[:limit]
    lines = [f"{i}. {sanitize(name)}" for i, name in enumerate(shown, start=1)]
    overflow = len(snapshot.roster) - len(shown)
    if overflow > 0:
        lines.append(f"...and {overflow} more")
    return "\n".join(lines)


def map_thumbnail(map_name: str | None) -> str:
    if not map_name or map_name == "Unknown" or not cfg.MAP_THUMBNAIL_URL:
        return ""
    return cfg.MAP_THUMBNAIL_URL.format(map=map_name.replace(" ", "_"))


# === Per-kind details ===

def _common_fields(srv: ServerConfig, snapshot: ServerSnapshot, offline_status: str = "Offline") -> list:
    return [
        EmbedField("🌐 Address", f"`{srv.address}`", inline=True),
        EmbedField("🔹 Status", "Online" if snapshot.online else offline_status, inline=True),
        EmbedField("👥 Players", players_text(snapshot), inline=True),
    ]


def _process_query_details(srv, snapshot):
    fields = _common_fields(srv, snapshot, offline_status="Offline / map change")
    map_name = snapshot.map_name if snapshot.online and snapshot.map_name else "Unknown"
    fields.append(EmbedField("🗺️ Map", sanitize(map_name, 256)))
    fields.append(EmbedField("📋 Players online", roster_text(snapshot)))
    return {
        "description": srv.description or DIVIDER,
        "fields": fields,
        "thumbnail_url": map_thumbnail(snapshot.map_name) if snapshot.online else "",
    }


def _http_status_details(srv, snapshot):
    return {
        "description": srv.description or "🔻 Server status",
        "fields": _common_fields(srv, snapshot),
    }


def _game_query_details(srv, snapshot):
    return {
        "description": srv.description or "⛏️ Minecraft Server",
        "fields": _common_fields(srv, snapshot),
    }


DETAIL_BUILDERS = {
    ServerKind.PROCESS_QUERY: _process_query_details,
    ServerKind.HTTP_STATUS_API: _http_status_details,
    ServerKind.GAME_QUERY: _game_query_details,
}

# Kinds whose details message gets a "Connect" link button
CONNECT_BUTTON_KINDS = {ServerKind.PROCESS_QUERY, ServerKind.HTTP_STATUS_API}


def server_content(srv: ServerConfig, snapshot: ServerSnapshot) -> RichContent:
    details = DETAIL_BUILDERS[srv.kind](srv, snapshot)
    button_url = srv.connect_url if srv.kind in CONNECT_BUTTON_KINDS else ""
    return RichContent(
        title=truncate(f"{status_glyph(snapshot.online)} {snapshot.display_name}", 256),
        description=details["description"],
        color=COLOR_ONLINE if snapshot.online else COLOR_OFFLINE,
        fields=tuple(details["fields"]),
        thumbnail_url=details.get("thumbnail_url", ""),
        button_label="Connect" if button_url else "",
        button_url=button_url,
    )


def project_info_content(info: ProjectInfo) -> RichContent:
    description = info.description
    if info.url:
        description = (description + "\n" if description else "") + f"[Open link]({info.url})"
    return RichContent(
        title=info.title,
        description=description,
        color=info.color,
        thumbnail_url=info.thumbnail_url,
        footer=info.footer,
        timestamp=False,
    )
