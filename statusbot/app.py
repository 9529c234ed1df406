import logging
import signal
import sys

from . import __version__
from .bootstrap import setup_channels
from .config import load_servers, load_settings
from .discord_api import DiscordClient, make_session
from .errors import ConfigurationError, DiscordApiError, PersistenceFailure
from .logs import setup_logging
from .probes import default_probes
from .publisher import DiscordPublisher
from .reconciler import Reconciler
from .scheduler import PassScheduler
from .store import IdentityStore

logger = logging.getLogger(__name__)


def build(settings):
    """Wire store, Discord client, publisher, reconciler and scheduler together."""
    servers, project_info = load_servers(settings.config_path)
    logger.info("[INIT] Monitoring %s server(s): %s", len(servers), ", ".join(s.name for s in servers))

    store = IdentityStore.load(settings.data_path)
    client = DiscordClient(make_session(settings.token))
    me = client.current_user()
    logger.info("[INIT] Logged in as %s (%s)", me.get("username"), me.get("id"))

    publisher = DiscordPublisher(client, store, guild_id=settings.guild_id, bot_user_id=str(me["id"]))
    publisher.message_channel_id = setup_channels(client, publisher, store, settings.guild_id, servers)

    reconciler = Reconciler(servers, store, publisher, default_probes(), project_info=project_info)
    scheduler = PassScheduler(reconciler.run_pass, settings.interval)
    return store, scheduler


def main() -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging()
        logger.error("[ERROR] %s", e)
        return 2
    setup_logging(debug_log=settings.debug_log)
    logger.info("[INIT] Starting Discord status bot v%s", __version__)

    try:
        store, scheduler = build(settings)
    except (ConfigurationError, PersistenceFailure) as e:
        logger.error("[ERROR] %s", e)
        return 2
    except DiscordApiError as e:
        logger.error("[ERROR] Bot startup failed: %s", e)
        return 1

    # Graceful shutdown: abandon the pass in flight, flush state
    def _graceful_exit(signum, frame):
        logger.info("[SHUTDOWN] Signal %s received. Saving state...", signum)
        scheduler.stop()
        store.flush()

    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig:
            signal.signal(sig, _graceful_exit)

    scheduler.run_forever()
    store.flush()
    logger.info("[SHUTDOWN] Stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
