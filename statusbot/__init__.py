"""Discord status bot: mirrors game server status into voice channel names and embeds."""

__version__ = "1.0.0"
