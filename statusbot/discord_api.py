import logging
import random
import time

import requests
from requests.adapters import HTTPAdapter

from . import config as cfg
from .errors import DiscordApiError, ResourceMissing, TransientApiFailure

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"
USER_AGENT = "DiscordBot (https://github.com/statusbot, 1.0)"

# Channel types
GUILD_TEXT = 0
GUILD_VOICE = 2
GUILD_CATEGORY = 4

# Permission bits
VIEW_CHANNEL = 1 << 10
SEND_MESSAGES = 1 << 11
CONNECT = 1 << 20
SPEAK = 1 << 21

OVERWRITE_ROLE = 0

# JSON error codes that mean "the thing you referenced is gone"
UNKNOWN_RESOURCE_CODES = {10003, 10008}  # unknown channel, unknown message


def _sleep_backoff(attempt: int, base: float = 0.75, cap: float = 5.0, sleep=time.sleep):
    delay = min(cap, base * (2 ** attempt)) + random.uniform(0, 0.25)
    sleep(delay)


def make_session(token: str) -> requests.Session:
    session = requests.Session()
    session.mount("https://", HTTPAdapter(pool_connections=4, pool_maxsize=8))
    session.headers.update({
        "Authorization": f"Bot {token}",
        "User-Agent": USER_AGENT,
    })
    return session


def _error_code(resp) -> int | None:
    try:
        data = resp.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("code"), int):
        return data["code"]
    return None


class DiscordClient:
    """Thin REST client for the handful of endpoints the bot needs.

    request() keeps the (resp, err) shape with 429 Retry-After and 5xx backoff;
    the endpoint helpers turn failures into ResourceMissing /
    TransientApiFailure / DiscordApiError.
    """

    def __init__(self, session: requests.Session, *, base_url: str = API_BASE,
                 timeout: float = 15, max_retries: int = 3,
                 max_rate_limit_wait: float = cfg.MAX_RATE_LIMIT_WAIT, sleep=time.sleep):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_rate_limit_wait = max_rate_limit_wait
        self._sleep = sleep

    def request(self, method: str, path: str, *, json_payload=None, params=None):
        """Request wrapper with 429 Retry-After + 5xx backoff. Returns (resp, errstr|None)."""
        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(method, url, json=json_payload, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt >= self.max_retries:
                    return None, f"request exception: {e}"
                _sleep_backoff(attempt, sleep=self._sleep)
                continue

            if resp.status_code == 429:
                try:
                    ra = resp.headers.get("Retry-After")
                    if not ra:
                        ra = resp.json().get("retry_after")
                    delay = float(ra) if ra else 1.0
                except (ValueError, AttributeError):
                    delay = 1.0
                if delay > self.max_rate_limit_wait:
                    logger.debug("[DEBUG] Rate limited on %s %s for %.2fs; not waiting", method, path, delay)
                    return resp, f"429 Too Many Requests (retry after {delay:.1f}s)"
                if attempt >= self.max_retries:
                    return resp, f"429 Too Many Requests (gave up after {self.max_retries} retries)"
                logger.debug("[DEBUG] Rate limited on %s %s; sleeping %.2fs", method, path, delay)
                self._sleep(delay + random.uniform(0, 0.25))
                continue

            if 500 <= resp.status_code < 600:
                if attempt >= self.max_retries:
                    return resp, f"{resp.status_code} server error"
                _sleep_backoff(attempt, sleep=self._sleep)
                continue

            return resp, None
        return None, "exhausted retries"

    def _call(self, method: str, path: str, *, json_payload=None, params=None):
        resp, err = self.request(method, path, json_payload=json_payload, params=params)
        what = f"{method} {path}"
        if resp is None:
            raise TransientApiFailure(f"{what}: {err}")
        status = resp.status_code
        if err is not None:
            raise TransientApiFailure(f"{what}: {err}", status=status)
        if status == 404:
            raise ResourceMissing(f"{what}: not found", status=404, code=_error_code(resp))
        if status >= 400:
            code = _error_code(resp)
            if code in UNKNOWN_RESOURCE_CODES:
                raise ResourceMissing(f"{what}: unknown resource", status=status, code=code)
            raise DiscordApiError(f"{what}: {status} - {resp.text[:180]}", status=status, code=code)
        if status == 204 or not resp.content:
            return None
        return resp.json()

    # === Users / guilds ===

    def current_user(self) -> dict:
        return self._call("GET", "/users/@me")

    def guild_channels(self, guild_id) -> list:
        return self._call("GET", f"/guilds/{guild_id}/channels")

    def create_channel(self, guild_id, name: str, channel_type: int, *, parent_id=None,
                       permission_overwrites=None) -> dict:
        payload = {"name": name, "type": channel_type}
        if parent_id is not None:
            payload["parent_id"] = str(parent_id)
        if permission_overwrites:
            payload["permission_overwrites"] = permission_overwrites
        return self._call("POST", f"/guilds/{guild_id}/channels", json_payload=payload)

    # === Channels ===

    def get_channel(self, channel_id) -> dict:
        return self._call("GET", f"/channels/{channel_id}")

    def rename_channel(self, channel_id, name: str) -> dict:
        return self._call("PATCH", f"/channels/{channel_id}", json_payload={"name": name})

    def edit_permissions(self, channel_id, overwrite_id, *, allow: int, deny: int,
                         overwrite_type: int = OVERWRITE_ROLE) -> None:
        self._call("PUT", f"/channels/{channel_id}/permissions/{overwrite_id}",
                   json_payload={"allow": str(allow), "deny": str(deny), "type": overwrite_type})

    # === Messages ===

    def list_messages(self, channel_id, limit: int = 50) -> list:
        return self._call("GET", f"/channels/{channel_id}/messages", params={"limit": limit})

    def send_message(self, channel_id, payload: dict) -> dict:
        return self._call("POST", f"/channels/{channel_id}/messages", json_payload=payload)

    def edit_message(self, channel_id, message_id, payload: dict) -> dict:
        return self._call("PATCH", f"/channels/{channel_id}/messages/{message_id}", json_payload=payload)

    def delete_message(self, channel_id, message_id) -> None:
        self._call("DELETE", f"/channels/{channel_id}/messages/{message_id}")
