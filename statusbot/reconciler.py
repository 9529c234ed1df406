import logging
import time
from dataclasses import dataclass, field

from . import config as cfg
from .config import ProjectInfo, ServerConfig
from .errors import DiscordApiError, ProbeFailure, ResourceMissing
from .probes import ServerSnapshot, offline_snapshot
from .publisher import ResourceSync
from .render import project_info_content, server_content, status_label
from .store import IdentityStore

logger = logging.getLogger(__name__)


def voice_key(server_name: str) -> str:
    return f"{cfg.VOICE_KEY_PREFIX}{server_name}"


def _always_current() -> bool:
    return True


@dataclass
class PassReport:
    updated: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    label_failed: list = field(default_factory=list)
    purged: int = 0
    abandoned: bool = False


class Reconciler:
    """One pass: probe every server in order and converge its channel + message.

    Servers are handled one at a time. A failure on one server (probe, render
    or Discord call) is logged and the pass moves on to the next.
    """

    def __init__(self, servers: list[ServerConfig], store: IdentityStore, publisher: ResourceSync,
                 probes: dict, *, project_info: ProjectInfo | None = None,
                 pacing: float = cfg.SERVER_PACING_SECONDS, sleep=time.sleep):
        self.servers = list(servers)
        self.store = store
        self.publisher = publisher
        self.probes = probes
        self.project_info = project_info
        self.pacing = pacing
        self._sleep = sleep
        self._project_info_synced = False

    def run_pass(self, still_current=_always_current) -> PassReport:
        report = PassReport()
        text_channel_id = self.store.lookup(cfg.TEXT_CHANNEL_KEY)
        if text_channel_id:
            report.purged = self.publisher.purge_unmanaged(text_channel_id, self.store.known_ids())
        else:
            logger.warning("[WARN] No status text channel remembered; skipping cleanup.")

        self._sync_project_info()

        for index, srv in enumerate(self.servers):
            if not still_current():
                logger.info("[CYCLE] Pass superseded; stopping before %s.", srv.name)
                report.abandoned = True
                report.skipped.extend(s.name for s in self.servers[index:])
                break
            if index and self.pacing:
                self._sleep(self.pacing)
            try:
                ok = self.reconcile_server(srv, report)
            except Exception:
                logger.exception("[ERROR] Error processing server %s", srv.name)
                ok = False
            (report.updated if ok else report.failed).append(srv.name)

        logger.info("[CYCLE] Updated: %s  Failed: %s  Labels failed: %s  Skipped: %s  Purged: %s",
                    len(report.updated), len(report.failed), len(report.label_failed),
                    len(report.skipped), report.purged)
        return report

    def probe(self, srv: ServerConfig) -> ServerSnapshot:
        adapter = self.probes.get(srv.kind)
        if adapter is None:
            logger.error("[ERROR] No probe registered for %s (%s)", srv.name, srv.kind.value)
            return offline_snapshot(srv, ProbeFailure.ERROR)
        try:
            return adapter.probe(srv)
        except Exception as e:
            logger.warning("[WARN] Probe for %s raised: %s", srv.name, e)
            return offline_snapshot(srv, ProbeFailure.ERROR)

    def reconcile_server(self, srv: ServerConfig, report: PassReport | None = None) -> bool:
        """Converge one server. True once its details message is in place; a
        skipped label update is noted in report.label_failed instead."""
        snapshot = self.probe(srv)
        if snapshot.online:
            logger.info("[STATUS] %s is up: %s/%s on %s", srv.name, snapshot.player_count,
                        snapshot.max_players, snapshot.map_name or "-")
        else:
            logger.info("[STATUS] %s is DOWN (%s)", srv.name, snapshot.probe_error or "offline")

        label = status_label(snapshot)
        content = server_content(srv, snapshot)

        label_ok = False
        try:
            label_ok = self._sync_label(srv, snapshot, label)
        except DiscordApiError as e:
            logger.warning("[WARN] Label update for %s skipped this pass: %s", srv.name, e)

        try:
            self.publisher.sync_rich_resource(srv.name, content)
        except DiscordApiError as e:
            logger.error("[ERROR] Error sending message for %s: %s", srv.name, e)
            return False
        if not label_ok and report is not None:
            report.label_failed.append(srv.name)
        return True

    def _sync_label(self, srv: ServerConfig, snapshot: ServerSnapshot, label: str) -> bool:
        key = voice_key(srv.name)
        channel_id = self.store.lookup(key)
        if channel_id:
            try:
                renamed = self.publisher.sync_label_resource(channel_id, label)
                access = self.publisher.sync_label_access(channel_id, snapshot.online)
                return renamed and access
            except ResourceMissing:
                logger.info("[INFO] Voice channel %s for %s is gone; recreating.", channel_id, srv.name)
                self.store.forget(key)

        channel_id = self.publisher.create_label_resource(self.store.lookup(cfg.CATEGORY_KEY), label)
        self.store.remember(key, channel_id)
        return self.publisher.sync_label_access(channel_id, snapshot.online)

    def _sync_project_info(self) -> None:
        if self.project_info is None or self._project_info_synced:
            return
        try:
            self.publisher.sync_rich_resource(cfg.PROJECT_INFO_KEY, project_info_content(self.project_info))
            self._project_info_synced = True
        except DiscordApiError as e:
            logger.error("[ERROR] Error updating project info: %s", e)
