"""
Core Configuration Definitions.

This module defines the default structure and values for the console stream
client's configuration using `yacs`. It serves as the single source of truth
for all configurable parameters.

Configuration is organized into sections:
- SYSTEM: Local paths (log directory).
- STREAM: Endpoints, credentials, page sizes and channel parameters.
- SNOWFLAKE: Layout of the server's time-ordered identifiers.
"""

import os
import platform
from pathlib import Path
from yacs.config import CfgNode as CN  # type: ignore[import-untyped]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _default_data_dir() -> Path:
    system = platform.system().lower()
    if system == "windows":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / "ConsoleStream"
        return Path.home() / "AppData" / "Local" / "ConsoleStream"
    if system == "darwin":
        return Path.home() / "Library" / "Application Support" / "ConsoleStream"
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "console-stream"
    return Path.home() / ".local" / "share" / "console-stream"


def _ws_url_from_http(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


_C = CN()

# -----------------------------------------------------------------------------
# System Configuration
# -----------------------------------------------------------------------------
_C.SYSTEM = CN()
_C.SYSTEM.DATA_DIR = os.environ.get("CONSOLE_STREAM_DATA_DIR", str(_default_data_dir()))

# -----------------------------------------------------------------------------
# Stream Configuration
# -----------------------------------------------------------------------------
_C.STREAM = CN()
# REST root of the instance server, e.g. http://127.0.0.1:16662/api/v1
_C.STREAM.BASE_URL = os.environ.get(
    "CONSOLE_STREAM_BASE_URL", "http://127.0.0.1:16662/api/v1"
).rstrip("/")

# Push-channel root; derived from BASE_URL unless set explicitly
_C.STREAM.WS_BASE_URL = os.environ.get(
    "CONSOLE_STREAM_WS_BASE_URL", _ws_url_from_http(_C.STREAM.BASE_URL)
).rstrip("/")

# Bearer token sent with backfill requests and the channel handshake
_C.STREAM.TOKEN = os.environ.get("CONSOLE_STREAM_TOKEN", "")

# Capability name handed to the authorization oracle
_C.STREAM.CAPABILITY = "can_access_instance_console"

# Lines requested by the initial backfill
_C.STREAM.INITIAL_PAGE_SIZE = _env_int("CONSOLE_STREAM_INITIAL_PAGE_SIZE", 100)

# Lines requested per backward-pagination page
_C.STREAM.PAGE_SIZE = _env_int("CONSOLE_STREAM_PAGE_SIZE", 40)

# WebSocket close code treated as an orderly shutdown
_C.STREAM.NORMAL_CLOSURE_CODE = 1000

# Channel handshake timeout (seconds)
_C.STREAM.OPEN_TIMEOUT_SEC = _env_float("CONSOLE_STREAM_OPEN_TIMEOUT_SEC", 10.0)

# Timeout for command submission (seconds); backfill has no timeout
_C.STREAM.COMMAND_TIMEOUT_SEC = _env_float("CONSOLE_STREAM_COMMAND_TIMEOUT_SEC", 30.0)

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
_C.LOGGING = CN()
# Diagnostics level on stderr; stdout carries console output only
_C.LOGGING.LEVEL = os.environ.get("LOG_LEVEL", "WARNING").upper()
# Rotating log file under SYSTEM.DATA_DIR/logs, off for interactive use
_C.LOGGING.FILE_ENABLED = os.environ.get("LOG_TO_FILE", "").strip().lower() in {"1", "true", "yes"}
# Explicit log file path; enables the file handler when set
_C.LOGGING.FILE = os.environ.get("LOG_FILE", "")
_C.LOGGING.MAX_BYTES = _env_int("LOG_MAX_BYTES", 5 * 1024 * 1024)
_C.LOGGING.BACKUP_COUNT = _env_int("LOG_BACKUP_COUNT", 5)

# -----------------------------------------------------------------------------
# Snowflake Layout
# -----------------------------------------------------------------------------
_C.SNOWFLAKE = CN()
# Bits below the millisecond timestamp (machine id, node id, sequence)
_C.SNOWFLAKE.TIMESTAMP_SHIFT = 22
# Epoch of the embedded timestamp, in Unix milliseconds
_C.SNOWFLAKE.EPOCH_MS = 0


def get_cfg_defaults():
    """
    Get a yacs CfgNode object with default values.
    Returns a clone so callers never mutate the module defaults.
    """
    return _C.clone()
