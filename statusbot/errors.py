"""Exception types used across the bot."""


class StatusBotError(Exception):
    pass


class ConfigurationError(StatusBotError):
    """servers.json / environment is unusable. Fatal at startup only."""


class PersistenceFailure(StatusBotError):
    """The identity mapping file could not be read or written."""


class ProbeFailure(StatusBotError):
    """A game server probe failed. Never escapes a probe adapter."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    MALFORMED = "malformed"
    ERROR = "error"

    def __init__(self, kind: str, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


class DiscordApiError(StatusBotError):
    def __init__(self, message: str, status: int | None = None, code: int | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


class ResourceMissing(DiscordApiError):
    """A stored channel/message id no longer exists on Discord."""


class TransientApiFailure(DiscordApiError):
    """Rate limited, 5xx or network trouble. The next pass retries."""
