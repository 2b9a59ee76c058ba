"""Logging setup and configuration."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from spid_client.logging.context import set_log_context
from spid_client.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_BACKUP_COUNT = 7

PLAIN_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"

# Third-party loggers kept at WARNING
NOISY_LOGGERS = [
    "aiohttp",
    "aiohttp.access",
    "aiohttp.client",
    "asyncio",
]


def get_log_file_path(log_dir: Path, name: str = "spid_client") -> Path:
    """
    Log file for this process: {log_dir}/{YYYY-MM-DD}/{name}_{HHMM}.log
    """
    started = datetime.now()
    return log_dir / f"{started:%Y-%m-%d}" / f"{name}_{started:%H%M}.log"


def _file_handler(
    path: Path,
    level: int,
    json_format: bool,
    rotation_when: str,
    backup_count: int,
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        path, when=rotation_when, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "spid_client",
    log_dir: Path | None = None,
    log_to_file: bool = False,
    json_format: bool = True,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    client_id: str | None = None,
) -> logging.Logger:
    """
    Configure the root logger for an application using the client.

    Replaces any existing root handlers with a console handler and, when
    log_to_file is set, a time-rotated file handler.

    Args:
        name: Logger returned, and prefix of the log file name
        log_dir: Directory for log files (default: ./logs)
        log_to_file: Also write to a rotating file
        json_format: JSON lines in the file (default: True)
        console_level: Console handler level
        file_level: File handler level
        rotation_when: TimedRotatingFileHandler `when` ('midnight', 'H', ...)
        backup_count: Rotated files to keep
        suppress_noisy: Raise NOISY_LOGGERS to WARNING
        client_id: Put into the log context of every record

    Returns:
        The named logger
    """
    if client_id:
        set_log_context(client_id=client_id)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter(stream=sys.stdout))
    handlers: list[logging.Handler] = [console]

    log_file = None
    if log_to_file:
        log_file = get_log_file_path(log_dir or DEFAULT_LOG_DIR, name)
        handlers.append(
            _file_handler(log_file, file_level, json_format, rotation_when, backup_count)
        )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: file={log_file}, json={json_format}")
    return logger


def generate_trace_id() -> str:
    """Trace id for one flow's log lines: t-YYYYMMDD-HHMMSS-xxxx."""
    return f"t-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"


__all__ = [
    "setup_logging",
    "get_log_file_path",
    "generate_trace_id",
    "NOISY_LOGGERS",
]
