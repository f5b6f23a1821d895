from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from console_stream.config import config
from console_stream.errors import DecodeRejection
from console_stream.models import LogLine

logger = logging.getLogger(__name__)


class EventInnerKind:
    INSTANCE_EVENT = "InstanceEvent"
    USER_EVENT = "UserEvent"
    FS_EVENT = "FSEvent"
    MACRO_EVENT = "MacroEvent"
    PROGRESSION_EVENT = "ProgressionEvent"


class InstanceEventKind:
    STATE_TRANSITION = "StateTransition"
    INSTANCE_WARNING = "InstanceWarning"
    INSTANCE_ERROR = "InstanceError"
    INSTANCE_INPUT = "InstanceInput"
    INSTANCE_OUTPUT = "InstanceOutput"
    SYSTEM_MESSAGE = "SystemMessage"
    PLAYER_CHANGE = "PlayerChange"
    PLAYER_MESSAGE = "PlayerMessage"


EVENT_INNER_KINDS = frozenset(
    {
        EventInnerKind.INSTANCE_EVENT,
        EventInnerKind.USER_EVENT,
        EventInnerKind.FS_EVENT,
        EventInnerKind.MACRO_EVENT,
        EventInnerKind.PROGRESSION_EVENT,
    }
)

INSTANCE_EVENT_KINDS = frozenset(
    {
        InstanceEventKind.STATE_TRANSITION,
        InstanceEventKind.INSTANCE_WARNING,
        InstanceEventKind.INSTANCE_ERROR,
        InstanceEventKind.INSTANCE_INPUT,
        InstanceEventKind.INSTANCE_OUTPUT,
        InstanceEventKind.SYSTEM_MESSAGE,
        InstanceEventKind.PLAYER_CHANGE,
        InstanceEventKind.PLAYER_MESSAGE,
    }
)


def snowflake_timestamp(snowflake: int) -> int:
    """Millisecond Unix timestamp embedded in a snowflake id."""
    shift = int(config.SNOWFLAKE.TIMESTAMP_SHIFT)
    return (snowflake >> shift) + int(config.SNOWFLAKE.EPOCH_MS)


def parse_snowflake(raw: Any) -> int:
    if isinstance(raw, bool):
        raise DecodeRejection("snowflake must be an integer", detail=raw)
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().isascii() and raw.strip().isdigit():
        # str.isdigit() alone accepts superscripts and other scripts' digits
        value = int(raw.strip())
    else:
        raise DecodeRejection("snowflake must be an integer", detail=raw)
    if value < 0:
        raise DecodeRejection("snowflake must not be negative", detail=raw)
    return value


def _tag_of(node: Any, field: str) -> str:
    if not isinstance(node, Mapping):
        raise DecodeRejection(f"{field} must be an object")
    tag = node.get("type")
    if not isinstance(tag, str) or not tag:
        raise DecodeRejection(f"{field}.type is missing")
    return tag


def _instance_output_message(event_inner: Mapping[str, Any]) -> str:
    instance_event_inner = event_inner.get("instance_event_inner")
    kind = _tag_of(instance_event_inner, "instance_event_inner")
    if kind == InstanceEventKind.INSTANCE_OUTPUT:
        message = instance_event_inner.get("message")
        if not isinstance(message, str):
            raise DecodeRejection("InstanceOutput.message must be a string")
        return message
    if kind in INSTANCE_EVENT_KINDS:
        raise DecodeRejection(f"instance event {kind} is not console output", detail=kind)
    raise DecodeRejection(f"unknown instance event kind {kind}", detail=kind)


def decode(raw: Any) -> LogLine:
    """
    Turn a client event envelope into a LogLine.

    Only `InstanceEvent` envelopes whose inner event is `InstanceOutput` are
    accepted; everything else raises DecodeRejection. The timestamp comes from
    the snowflake, never from receipt time.
    """
    if not isinstance(raw, Mapping):
        raise DecodeRejection("envelope must be an object")
    event_inner = raw.get("event_inner")
    kind = _tag_of(event_inner, "event_inner")
    if kind != EventInnerKind.INSTANCE_EVENT:
        if kind in EVENT_INNER_KINDS:
            raise DecodeRejection(f"event {kind} is not an instance event", detail=kind)
        raise DecodeRejection(f"unknown event kind {kind}", detail=kind)

    message = _instance_output_message(event_inner)
    source_id = event_inner.get("instance_uuid")
    if not isinstance(source_id, str) or not source_id:
        raise DecodeRejection("instance_uuid is missing")

    raw_snowflake = raw.get("snowflake")
    if raw_snowflake is None:
        raw_snowflake = raw.get("snowflake_str")
    snowflake = parse_snowflake(raw_snowflake)

    try:
        return LogLine(
            id=snowflake,
            timestamp=snowflake_timestamp(snowflake),
            source_name=event_inner.get("instance_name") or "",
            source_id=source_id,
            detail=raw.get("details") or "",
            message=message,
        )
    except ValidationError as exc:
        raise DecodeRejection("envelope fields have unexpected types", detail=str(exc)) from exc


def decode_or_none(raw: Any) -> LogLine | None:
    try:
        return decode(raw)
    except DecodeRejection as exc:
        logger.debug("Dropped envelope: %s", exc.message)
        return None


def decode_frame(frame: str | bytes) -> LogLine:
    """Decode one push-channel frame (a JSON envelope)."""
    if isinstance(frame, (bytes, bytearray)):
        frame = bytes(frame).decode("utf-8", errors="replace")
    try:
        payload = json.loads(frame)
    except json.JSONDecodeError as exc:
        raise DecodeRejection("frame is not valid JSON", detail=str(exc)) from exc
    return decode(payload)
