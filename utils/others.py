import logging
import os
from datetime import datetime

from definitions import LOGS_DIR

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[38;5;244m",  # gray
        "INFO": "\033[38;5;120m",  # soft mint green
        "WARNING": "\033[38;5;221m",  # warm yellow
        "ERROR": "\033[38;5;196m",  # bright red
        "CRITICAL": "\033[1;38;5;196;48;5;232m",  # bold bright red on dark bg
    }
    RESET = "\033[0m"

    def format(self, record):
        level = record.levelname
        if level in self.COLORS:
            record.levelname = f"{self.COLORS[level]}{level}{self.RESET}"
        return super().format(record)


def setup_logging(config, console=False, debug=False):
    """
    Sets up the logging configuration based on provided settings.

    Args:
        config (dict): The configuration dictionary; `script.log_file_name` names the log file.
        console (bool): If True, log to console instead of a file.
        debug (bool): If True, set the logging level to DEBUG; otherwise, INFO.

    Returns:
        str | None: The log file path when logging to a file.
    """
    script_cfg = (config or {}).get("script", {}) or {}
    log_file_name_base = script_cfg.get("log_file_name", "skyposter")
    log_file_name_time = datetime.now().strftime("%Y%m%d%H%M%S")
    log_file_path = os.path.join(LOGS_DIR, f"{log_file_name_base}-{log_file_name_time}.log")

    logger_level = logging.DEBUG if debug else logging.INFO

    log_format = "%(asctime)s [%(name)s.%(funcName)s:%(lineno)d] %(levelname)s - %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    if console:
        handler = logging.StreamHandler()
        handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
    else:
        os.makedirs(LOGS_DIR, exist_ok=True)
        handler = logging.FileHandler(log_file_path)
        handler.setFormatter(logging.Formatter(log_format, date_format))

    logging.basicConfig(
        level=logger_level,
        format=log_format,
        datefmt=date_format,
        handlers=[handler],
    )

    # urllib3 is chatty at DEBUG (one line per connection)
    logging.getLogger("urllib3").setLevel(logging.INFO)
    logging.getLogger("PIL").setLevel(logging.INFO)

    logger.info("Logging initialized.")
    if console:
        logger.info("Logging to console.")
        return None
    logger.info("Logging to file: %s", log_file_path)
    return log_file_path


def mask_token(token, visible=6):
    """Shorten a bearer token for logs: 'eyJhbG…(512 chars)'."""
    if not token:
        return "<none>"
    token = str(token)
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}…({len(token)} chars)"


def format_kb(size_bytes):
    return f"{size_bytes / 1024:.1f} KB"
