import socket
from types import SimpleNamespace

import pytest
import requests

from statusbot import probes
from statusbot.config import ServerConfig, ServerKind
from statusbot.errors import ProbeFailure
from statusbot.probes import GameQueryProbe, HttpStatusApiProbe, ProcessQueryProbe, default_probes

GMOD = ServerConfig(name="Metro #1", kind=ServerKind.PROCESS_QUERY, host="10.0.0.1", port=27015,
                    display_max_players=32)
SCP = ServerConfig(name="SCP", kind=ServerKind.HTTP_STATUS_API, host="10.0.0.2", port=7777,
                   status_url="http://status.invalid/scp", display_max_players=30)
MINE = ServerConfig(name="Mine", kind=ServerKind.GAME_QUERY, host="10.0.0.3", port=25565)


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(probes.time, "sleep", lambda s: None)


# === A2S ===

def test_a2s_online(monkeypatch):
    info = SimpleNamespace(server_name="Real Name", map_name="gm_metro", player_count=2, max_players=32)
    players = [SimpleNamespace(name="alice"), SimpleNamespace(name="  ")]
    monkeypatch.setattr(probes.a2s, "info", lambda addr, timeout: info)
    monkeypatch.setattr(probes.a2s, "players", lambda addr, timeout: players)

    snap = ProcessQueryProbe().probe(GMOD)

    assert snap.online
    assert snap.display_name == "Metro #1"
    assert (snap.player_count, snap.max_players) == (2, 32)
    assert snap.map_name == "gm_metro"
    assert snap.roster == ("alice", probes.UNKNOWN_PLAYER)
    assert snap.probe_error is None


def test_a2s_timeout_retries_then_offline(monkeypatch):
    calls = []

    def timeout(addr, timeout):
        calls.append(addr)
        raise socket.timeout("timed out")

    monkeypatch.setattr(probes.a2s, "info", timeout)

    snap = ProcessQueryProbe().probe(GMOD)

    assert not snap.online
    assert snap.probe_error == ProbeFailure.TIMEOUT
    assert snap.player_count == 0
    assert snap.max_players == 32
    assert len(calls) == ProcessQueryProbe.attempts


def test_a2s_refused_is_connection_failure(monkeypatch):
    def refused(addr, timeout):
        raise ConnectionRefusedError()

    monkeypatch.setattr(probes.a2s, "info", refused)

    assert ProcessQueryProbe().probe(GMOD).probe_error == ProbeFailure.CONNECTION


def test_a2s_broken_reply_is_malformed_without_retry(monkeypatch):
    calls = []

    def broken(addr, timeout):
        calls.append(addr)
        raise probes.a2s.BrokenMessageError("bad header")

    monkeypatch.setattr(probes.a2s, "info", broken)

    snap = ProcessQueryProbe().probe(GMOD)

    assert snap.probe_error == ProbeFailure.MALFORMED
    assert len(calls) == 1


# === HTTP status API ===

class FakeResponse:
    def __init__(self, payload=None, status=200, error=None):
        self.payload = payload
        self.status_code = status
        self.error = error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        if self.error:
            raise self.error
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, timeout, headers):
        self.requests.append((url, timeout, headers))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_http_online_payload():
    session = FakeSession(FakeResponse({"online": True, "players": 12, "maxPlayers": 40, "name": "SCP Main"}))

    snap = HttpStatusApiProbe(session).probe(SCP)

    assert snap.online
    assert (snap.player_count, snap.max_players, snap.display_name) == (12, 40, "SCP Main")
    url, timeout, headers = session.requests[0]
    assert url == SCP.status_url
    assert headers["Cache-Control"] == "no-cache"


def test_http_status_string_and_online_count():
    session = FakeSession(FakeResponse({"status": "online", "onlineCount": 7}))

    snap = HttpStatusApiProbe(session).probe(SCP)

    assert snap.online
    assert (snap.player_count, snap.max_players, snap.display_name) == (7, 30, "SCP")


def test_http_reports_offline():
    session = FakeSession(FakeResponse({"online": False, "players": 9}))

    snap = HttpStatusApiProbe(session).probe(SCP)

    assert not snap.online
    assert snap.player_count == 0
    assert snap.probe_error is None


def test_http_non_object_is_malformed():
    session = FakeSession(FakeResponse(["nope"]))

    assert HttpStatusApiProbe(session).probe(SCP).probe_error == ProbeFailure.MALFORMED


def test_http_bad_count_is_malformed():
    session = FakeSession(FakeResponse({"online": True, "players": "lots"}))

    assert HttpStatusApiProbe(session).probe(SCP).probe_error == ProbeFailure.MALFORMED


def test_http_invalid_json_is_malformed():
    session = FakeSession(FakeResponse(error=ValueError("Expecting value")))

    assert HttpStatusApiProbe(session).probe(SCP).probe_error == ProbeFailure.MALFORMED


def test_http_retries_transient_then_succeeds():
    session = FakeSession(requests.ConnectionError("reset"), FakeResponse({"online": True, "players": 1}))

    snap = HttpStatusApiProbe(session).probe(SCP)

    assert snap.online
    assert len(session.requests) == 2


def test_http_timeout_exhausts_retries():
    session = FakeSession(*[requests.Timeout("slow")] * HttpStatusApiProbe.attempts)

    snap = HttpStatusApiProbe(session).probe(SCP)

    assert snap.probe_error == ProbeFailure.TIMEOUT
    assert len(session.requests) == HttpStatusApiProbe.attempts


# === Minecraft ===

class FakeJavaServer:
    status_result = None
    error = None
    lookups = []

    @classmethod
    def lookup(cls, address, timeout):
        cls.lookups.append((address, timeout))
        return cls()

    def status(self):
        if FakeJavaServer.error:
            raise FakeJavaServer.error
        return FakeJavaServer.status_result


@pytest.fixture
def java_server(monkeypatch):
    FakeJavaServer.status_result = None
    FakeJavaServer.error = None
    FakeJavaServer.lookups = []
    monkeypatch.setattr(probes, "JavaServer", FakeJavaServer)
    return FakeJavaServer


def test_minecraft_online(java_server):
    sample = [SimpleNamespace(name="steve"), SimpleNamespace(name="alex")]
    java_server.status_result = SimpleNamespace(players=SimpleNamespace(online=2, max=50, sample=sample))

    snap = GameQueryProbe().probe(MINE)

    assert snap.online
    assert (snap.player_count, snap.max_players) == (2, 50)
    assert snap.roster == ("steve", "alex")
    assert java_server.lookups[0] == ("10.0.0.3:25565", GameQueryProbe.timeout)


def test_minecraft_failure_is_offline(java_server):
    java_server.error = ConnectionResetError("reset")

    snap = GameQueryProbe().probe(MINE)

    assert not snap.online
    assert snap.probe_error == ProbeFailure.CONNECTION
    assert len(java_server.lookups) == GameQueryProbe.attempts


def test_default_probes_cover_every_kind():
    table = default_probes(FakeSession())

    assert set(table) == set(ServerKind)
    assert all(table[kind].kind is kind for kind in ServerKind)
