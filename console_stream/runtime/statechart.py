from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable

from console_stream.models import ConnectionStatus

logger = logging.getLogger(__name__)


class StreamEvent:
    AUTH_REVOKED = "auth.revoked"
    SESSION_STARTED = "session.started"
    BACKFILL_SUCCEEDED = "backfill.succeeded"
    CHANNEL_OPENED = "channel.opened"
    CHANNEL_CLOSED_NORMAL = "channel.closed.normal"
    CHANNEL_CLOSED_ABNORMAL = "channel.closed.abnormal"
    CHANNEL_TRANSPORT_ERROR = "channel.transport_error"


TERMINAL_STATES = {
    ConnectionStatus.CLOSED.value,
    ConnectionStatus.ERROR.value,
}

# States in which the push channel may still report its closure
CHANNEL_PENDING_OR_CONNECTED = (
    ConnectionStatus.LOADING.value,
    ConnectionStatus.BUFFERED.value,
    ConnectionStatus.LIVE.value,
    ConnectionStatus.LIVE_NO_BUFFER.value,
)


@dataclass(frozen=True)
class Transition:
    source: str
    event: str
    target: str


def _channel_end_rows(event: str, target: ConnectionStatus) -> tuple[Transition, ...]:
    return tuple(Transition(source, event, target.value) for source in CHANNEL_PENDING_OR_CONNECTED)


TRANSITIONS: tuple[Transition, ...] = (
    *(
        Transition(status.value, StreamEvent.AUTH_REVOKED, ConnectionStatus.NO_PERMISSION.value)
        for status in ConnectionStatus
    ),
    Transition("no-permission", StreamEvent.SESSION_STARTED, "loading"),
    Transition("loading", StreamEvent.BACKFILL_SUCCEEDED, "buffered"),
    Transition("live-no-buffer", StreamEvent.BACKFILL_SUCCEEDED, "live"),
    Transition("loading", StreamEvent.CHANNEL_OPENED, "live-no-buffer"),
    Transition("buffered", StreamEvent.CHANNEL_OPENED, "live"),
    *_channel_end_rows(StreamEvent.CHANNEL_CLOSED_NORMAL, ConnectionStatus.CLOSED),
    *_channel_end_rows(StreamEvent.CHANNEL_CLOSED_ABNORMAL, ConnectionStatus.ERROR),
    *_channel_end_rows(StreamEvent.CHANNEL_TRANSPORT_ERROR, ConnectionStatus.ERROR),
)


def transition_rows() -> Iterable[Transition]:
    return TRANSITIONS


def build_transition_index() -> Dict[tuple[str, str], Transition]:
    return {(row.source, row.event): row for row in TRANSITIONS}


def close_event_for_code(code: int | None, normal_code: int = 1000) -> str:
    if code == normal_code:
        return StreamEvent.CHANNEL_CLOSED_NORMAL
    return StreamEvent.CHANNEL_CLOSED_ABNORMAL


class StatusMachine:
    """
    Connection status of one stream session.

    Backfill completion and channel open race each other; each event is
    looked up against the current state only, so either order ends in
    `live`. Pairs missing from the table leave the state unchanged.
    """

    _index = build_transition_index()

    def __init__(self, initial: ConnectionStatus = ConnectionStatus.NO_PERMISSION) -> None:
        self._state = ConnectionStatus(initial)

    @property
    def state(self) -> ConnectionStatus:
        return self._state

    def is_terminal(self) -> bool:
        return self._state.value in TERMINAL_STATES

    def can_apply(self, event: str) -> bool:
        return (self._state.value, event) in self._index

    def apply(self, event: str) -> bool:
        row = self._index.get((self._state.value, event))
        if row is None:
            logger.debug("Ignored %s in state %s", event, self._state.value)
            return False
        previous = self._state
        self._state = ConnectionStatus(row.target)
        if previous is not self._state:
            logger.debug("Status %s -> %s on %s", previous.value, self._state.value, event)
        return True
