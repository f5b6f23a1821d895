import logging
from logging.handlers import RotatingFileHandler
import sys
from pathlib import Path

from .config import config

# Per-request INFO lines from these would interleave with tailed output
CHATTY_LOGGERS = ("httpx", "httpcore", "websockets")


def _resolve_level(verbosity: int) -> int:
    base = getattr(logging, str(config.LOGGING.LEVEL).upper(), logging.WARNING)
    if not isinstance(base, int):
        base = logging.WARNING
    return max(logging.DEBUG, base - 10 * max(0, verbosity))


def _log_file_path(log_file: str | None) -> Path | None:
    if log_file:
        return Path(log_file)
    if config.LOGGING.FILE:
        return Path(config.LOGGING.FILE)
    if config.LOGGING.FILE_ENABLED:
        return Path(config.SYSTEM.DATA_DIR) / "logs" / "console_stream.log"
    return None


def setup_logging(verbosity: int = 0, log_file: str | None = None) -> None:
    """
    Configure logging for the command line client.

    Diagnostics go to stderr so stdout stays reserved for console lines.
    Each `verbosity` step lowers the configured level by one (WARNING ->
    INFO -> DEBUG). A rotating file handler is added only when a log file
    is requested through `log_file`, `LOGGING.FILE` or `LOGGING.FILE_ENABLED`.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level = _resolve_level(verbosity)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    path = _log_file_path(log_file)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(config.LOGGING.MAX_BYTES),
            backupCount=int(config.LOGGING.BACKUP_COUNT),
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)
    if verbosity < 2:
        for name in CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))
