"""Routing of inbound envelopes to status, reading, or opaque handling."""

from __future__ import annotations

import json
from typing import Any, List

from models.records import (
    STATUS_EVENT_TYPE,
    ClassifiedEvent,
    Envelope,
    OpaqueEvent,
    ReadingEvent,
    StatusEvent,
)
from services.errors import PayloadParseError

_ONLINE = "online"
_OFFLINE = "offline"


def classify(envelope: Envelope) -> ClassifiedEvent:
    if envelope.event_type == STATUS_EVENT_TYPE:
        return _classify_status(envelope.text.strip())

    try:
        groups = parse_reading_groups(envelope.payload)
    except PayloadParseError:
        return OpaqueEvent(envelope=envelope)
    return ReadingEvent(groups=groups)


def parse_reading_groups(payload: bytes) -> List[List[Any]]:
    """Parse a JSON array of reading arrays, raising PayloadParseError otherwise."""
    try:
        parsed = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PayloadParseError(f"Payload is not JSON: {exc}") from exc

    if not isinstance(parsed, list):
        raise PayloadParseError("Payload is not a JSON array.")
    if not all(isinstance(group, list) for group in parsed):
        raise PayloadParseError("Payload array contains a non-array reading group.")
    return parsed


def _classify_status(data: str) -> StatusEvent:
    if data == _ONLINE:
        return StatusEvent(online=True, raw=data)
    if data == _OFFLINE:
        return StatusEvent(online=False, raw=data)
    return StatusEvent(online=None, raw=data)
