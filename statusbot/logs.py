import logging
import sys
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "statusbot"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(debug_log: bool = False, debug_path: str = "debug.log") -> logging.Logger:
    """Console is always on at INFO; debug_log also writes DEBUG to a rotating file."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # master gate
    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    if debug_log:
        file_handler = RotatingFileHandler(debug_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger
