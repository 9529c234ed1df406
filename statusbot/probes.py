"""Probe adapters: turn a ServerConfig into a normalized ServerSnapshot.

Every adapter swallows its own failures. A probe that times out, is refused,
or gets back garbage yields an offline snapshot carrying the failure kind;
the next scheduled pass is the retry mechanism beyond the adapter's own
bounded attempts.
"""

import logging
import socket
import time
from dataclasses import dataclass, field

import a2s
import requests
from mcstatus import JavaServer

from . import config as cfg
from .config import ServerConfig, ServerKind
from .errors import ProbeFailure

logger = logging.getLogger(__name__)

UNKNOWN_PLAYER = "Unknown player"
USER_AGENT = "Discord-StatusBot/1.0"


@dataclass(frozen=True)
class ServerSnapshot:
    online: bool
    display_name: str
    player_count: int = 0
    max_players: int = 0
    map_name: str | None = None
    roster: tuple = field(default_factory=tuple)
    probe_error: str | None = None


def offline_snapshot(config: ServerConfig, error: str | None = None) -> ServerSnapshot:
    return ServerSnapshot(
        online=False,
        display_name=config.name,
        max_players=config.display_max_players,
        probe_error=error,
    )


def classify_failure(exc: BaseException) -> str:
    if isinstance(exc, ProbeFailure):
        return exc.kind
    if isinstance(exc, (requests.Timeout, socket.timeout, TimeoutError)):
        return ProbeFailure.TIMEOUT
    if isinstance(exc, (a2s.BrokenMessageError, ValueError, KeyError, TypeError, AttributeError)):
        return ProbeFailure.MALFORMED
    if isinstance(exc, OSError):
        return ProbeFailure.CONNECTION
    return ProbeFailure.ERROR


_RETRYABLE = (ProbeFailure.TIMEOUT, ProbeFailure.CONNECTION)


def _count(value, name: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ProbeFailure(ProbeFailure.MALFORMED, f"{name} is not a number: {value!r}")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ProbeFailure(ProbeFailure.MALFORMED, f"{name} is not a number: {value!r}") from None
    return max(0, n)


class Probe:
    """Base adapter: bounded attempts around _query, failures become offline snapshots."""

    kind: ServerKind
    timeout = 5.0
    attempts = 1
    retry_delay = 0.5

    def probe(self, config: ServerConfig) -> ServerSnapshot:
        attempts = max(1, self.attempts)
        for attempt in range(attempts):
            try:
                return self._query(config)
            except Exception as e:
                reason = classify_failure(e)
                if reason in _RETRYABLE and attempt + 1 < attempts:
                    logger.debug("[DEBUG] %s probe attempt %s/%s failed (%s): %s",
                                 config.name, attempt + 1, attempts, reason, e)
                    time.sleep(self.retry_delay)
                    continue
                logger.info("[INFO] Query failed for %s (%s): %s", config.name, reason, e)
                return offline_snapshot(config, reason)
        return offline_snapshot(config, ProbeFailure.ERROR)

    def _query(self, config: ServerConfig) -> ServerSnapshot:
        raise NotImplementedError


class ProcessQueryProbe(Probe):
    """Source engine servers over A2S (Garry's Mod and friends)."""

    kind = ServerKind.PROCESS_QUERY
    timeout = cfg.A2S_TIMEOUT
    attempts = cfg.A2S_ATTEMPTS

    def _query(self, config):
        addr = (config.host, config.port)
        info = a2s.info(addr, timeout=self.timeout)
        players = a2s.players(addr, timeout=self.timeout)
        roster = tuple((p.name or "").strip() or UNKNOWN_PLAYER for p in players)
        return ServerSnapshot(
            online=True,
            display_name=config.name,
            player_count=_count(info.player_count, "player_count"),
            max_players=_count(info.max_players, "max_players") or config.display_max_players,
            map_name=info.map_name or None,
            roster=roster,
        )


class HttpStatusApiProbe(Probe):
    """JSON status endpoint: {"online"|"status", "players"|"onlineCount", "maxPlayers", "name"}."""

    kind = ServerKind.HTTP_STATUS_API
    timeout = cfg.HTTP_TIMEOUT
    attempts = cfg.HTTP_RETRIES + 1

    def __init__(self, session: requests.Session | None = None):
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
        session.max_redirects = 2
        self.session = session

    def _query(self, config):
        resp = self.session.get(
            config.status_url,
            timeout=self.timeout,
            headers={"Cache-Control": "no-cache", "Accept": "application/json"},
        )
        resp.raise_for_status()
        return normalize_status_payload(resp.json(), config)


def normalize_status_payload(data, config: ServerConfig) -> ServerSnapshot:
    if not isinstance(data, dict):
        raise ProbeFailure(ProbeFailure.MALFORMED, "Invalid API response format")
    online = data.get("online") is True or data.get("status") == "online"
    display_name = str(data.get("name") or config.name)
    max_raw = data.get("maxPlayers")
    max_players = _count(max_raw, "maxPlayers") if max_raw not in (None, "") else config.display_max_players
    if not online:
        return ServerSnapshot(online=False, display_name=display_name, max_players=max_players)
    players_raw = data.get("players")
    if players_raw in (None, ""):
        players_raw = data.get("onlineCount") or 0
    return ServerSnapshot(
        online=True,
        display_name=display_name,
        player_count=_count(players_raw, "players"),
        max_players=max_players,
    )


class GameQueryProbe(Probe):
    """Minecraft Java edition status protocol."""

    kind = ServerKind.GAME_QUERY
    timeout = cfg.MINECRAFT_TIMEOUT
    attempts = cfg.MINECRAFT_ATTEMPTS

    def _query(self, config):
        server = JavaServer.lookup(config.address, timeout=self.timeout)
        status = server.status()
        players = status.players
        sample = getattr(players, "sample", None) or []
        return ServerSnapshot(
            online=True,
            display_name=config.name,
            player_count=_count(players.online, "players.online"),
            max_players=_count(players.max, "players.max") or config.display_max_players,
            roster=tuple(p.name for p in sample if getattr(p, "name", "")),
        )


def default_probes(session: requests.Session | None = None) -> dict:
    """One adapter per ServerKind."""
    return {
        ServerKind.PROCESS_QUERY: ProcessQueryProbe(),
        ServerKind.HTTP_STATUS_API: HttpStatusApiProbe(session),
        ServerKind.GAME_QUERY: GameQueryProbe(),
    }
