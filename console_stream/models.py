"""
Data Models for the console stream client.

This module defines the core models shared by the decoder, merger, status
machine and coordinator:
- Connection lifecycle states (ConnectionStatus)
- Normalized console output records (LogLine)
- Consumer-facing view of a session (StreamSnapshot)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


class ConnectionStatus(str, Enum):
    """
    Enum representing the health of a console stream session.
    """
    NO_PERMISSION = "no-permission"    # Oracle denied console access
    LOADING = "loading"                # Session started, nothing settled yet
    BUFFERED = "buffered"              # History fetched, channel not open yet
    LIVE = "live"                      # History fetched and channel open
    LIVE_NO_BUFFER = "live-no-buffer"  # Channel open, history still missing
    CLOSED = "closed"                  # Channel closed normally
    ERROR = "error"                    # Channel closed abnormally or failed


STATUS_MESSAGES = {
    ConnectionStatus.NO_PERMISSION: "No permission to access console",
    ConnectionStatus.LOADING: "Loading console...",
    ConnectionStatus.BUFFERED: "History messages. No live updates",
    ConnectionStatus.LIVE: "Console is live",
    ConnectionStatus.LIVE_NO_BUFFER: (
        "Console is live but failed to fetch history. "
        "Your internet connection may be unstable"
    ),
    ConnectionStatus.CLOSED: "Console is closed",
    ConnectionStatus.ERROR: "Connection lost or error",
}


class LogLine(BaseModel):
    """One line of instance console output, keyed by its snowflake id."""
    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: int  # Unix milliseconds, derived from id
    source_name: str
    source_id: str
    detail: str = ""
    message: str

    @property
    def snowflake_str(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class StreamSnapshot:
    """Immutable view of a session handed to the rendering layer."""
    resource_key: Optional[str]
    generation: int
    status: ConnectionStatus
    log: Tuple[LogLine, ...] = ()
    pending_pages: int = 0

    @property
    def oldest_id(self) -> Optional[int]:
        return self.log[0].id if self.log else None

    @property
    def newest_id(self) -> Optional[int]:
        return self.log[-1].id if self.log else None

    @property
    def status_message(self) -> str:
        return STATUS_MESSAGES[self.status]

    def __len__(self) -> int:
        return len(self.log)
