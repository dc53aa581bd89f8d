"""Logging setup shared by the API server and the sweeper daemon."""

import logging
import os
from datetime import date
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(process_role)s - %(name)s - %(message)s"

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class ProcessRoleFilter(logging.Filter):
    """Stamps every record with the role of the process that wrote it."""

    def __init__(self, role: str):
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.process_role = self.role
        return True


class DailySizeRotatingHandler(RotatingFileHandler):
    """Size-rotating file handler that also starts a new file each calendar day."""

    def __init__(self, filename: str, max_bytes: int, backup_count: int = 0, **kwargs):
        super().__init__(
            filename, maxBytes=max_bytes, backupCount=backup_count, **kwargs
        )
        self.opened_on = date.today()

    def shouldRollover(self, record: logging.LogRecord) -> int:
        if date.today() != self.opened_on:
            return 1
        return super().shouldRollover(record)

    def doRollover(self) -> None:
        super().doRollover()
        self.opened_on = date.today()


def level_from_name(name: str) -> int:
    """Translate a level name such as "info" into a logging level."""
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def configure_logging(
    role: str,
    log_dir: str = "logs",
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 7,
    console: bool = True,
) -> logging.Logger:
    """Send root logging to ``<log_dir>/<role>.log`` and optionally stderr.

    Args:
        role: Process role, e.g. "engine" or "sweeper". Names the log file and
            is stamped on every record.
        log_dir: Directory for log files, created if missing.
        level: Logging level.
        max_bytes: Size at which the file rolls over.
        backup_count: Number of rotated files to keep.
        console: Whether to also log to stderr.

    Returns:
        The configured root logger.
    """
    if not role:
        raise ValueError("role is required")
    os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    role_filter = ProcessRoleFilter(role)

    handlers: list[logging.Handler] = [
        DailySizeRotatingHandler(
            os.path.join(log_dir, f"{role}.log"),
            max_bytes=max_bytes,
            backup_count=backup_count,
            encoding="utf-8",
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(role_filter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root
