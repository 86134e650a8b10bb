import json
import logging
import os
from datetime import UTC, datetime
from typing import Optional

from colorama import Fore, Style, init

init(autoreset=True)


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event_data": getattr(record, "event_data", {}),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter that appends event metadata when present"""

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.BLUE,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        record.levelname_colored = (
            self.COLORS.get(record.levelname, Fore.WHITE)
            + record.levelname
            + Style.RESET_ALL
        )
        message = super().format(record)
        event_data = getattr(record, "event_data", None)
        if event_data:
            pairs = " ".join(f"{key}={value}" for key, value in event_data.items())
            message = f"{message} {Fore.WHITE}{Style.DIM}{pairs}{Style.RESET_ALL}"
        return message


class DefaultEventMetadataFilter(logging.Filter):
    """Ensure log records carry the event_data attribute the formatters expect."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 (doc inherited)
        if not hasattr(record, "event_data"):
            record.event_data = {}
        return True


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = "data/logs/gateway.log",
    console: bool = True,
) -> logging.Logger:
    """Configure the root logger for a gateway or worker process.

    Args:
        level: Level name (DEBUG, INFO, ...)
        log_format: ``text`` for colored console lines, ``json`` for structured lines
        log_file: Path of the structured log file; empty or None disables it
        console: Whether to attach a console handler

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers when the app factory runs more than once
    if root.hasHandlers():
        root.handlers.clear()

    metadata_filter = DefaultEventMetadataFilter()

    if console:
        console_handler = logging.StreamHandler()
        if log_format == "json":
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(
                ColoredFormatter(
                    "%(asctime)s - %(levelname_colored)s - %(name)s - %(message)s"
                )
            )
        console_handler.addFilter(metadata_filter)
        root.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        file_handler.addFilter(metadata_filter)
        root.addHandler(file_handler)

    # aiokafka is chatty at INFO during rebalances
    logging.getLogger("aiokafka").setLevel(logging.WARNING)

    return root
