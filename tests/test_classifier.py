import pytest

from models.records import Envelope, OpaqueEvent, ReadingEvent, StatusEvent
from services.classifier import classify, parse_reading_groups
from services.errors import PayloadParseError


def _envelope(event_type: str, payload: bytes) -> Envelope:
    return Envelope(
        id="msg-1",
        device_id="device-1",
        event_type=event_type,
        payload=payload,
        published_at="2024-01-01T00:00:00Z",
    )


@pytest.mark.parametrize(
    "data, online",
    [(b"online", True), (b"offline", False), (b" online\n", True)],
)
def test_status_events_report_connectivity(data: bytes, online: bool) -> None:
    event = classify(_envelope("device/status", data))

    assert isinstance(event, StatusEvent)
    assert event.online is online
    assert event.reachable is online


def test_unrecognised_status_keeps_raw_text_without_signal() -> None:
    event = classify(_envelope("device/status", b"auto-update"))

    assert isinstance(event, StatusEvent)
    assert event.online is None
    assert event.raw == "auto-update"
    assert event.reachable is False


def test_reading_payload_yields_one_group_per_array() -> None:
    payload = b"[[1700000000, 120, 45], [1700000060, 130, 44]]"

    event = classify(_envelope("sensor-readings", payload))

    assert isinstance(event, ReadingEvent)
    assert event.groups == [[1700000000, 120, 45], [1700000060, 130, 44]]


def test_empty_array_is_a_reading_event_with_no_groups() -> None:
    event = classify(_envelope("sensor-readings", b"[]"))

    assert isinstance(event, ReadingEvent)
    assert event.groups == []


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"42", b'{"temp": 21}', b"[1, 2, 3]", b"[[1], 2]", b"\xff\xfe"],
)
def test_unstructured_payloads_are_opaque(payload: bytes) -> None:
    envelope = _envelope("sensor-readings", payload)

    event = classify(envelope)

    assert isinstance(event, OpaqueEvent)
    assert event.envelope is envelope


def test_status_payload_is_never_parsed_as_readings() -> None:
    event = classify(_envelope("device/status", b"[[1, 2]]"))

    assert isinstance(event, StatusEvent)
    assert event.online is None


def test_parse_reading_groups_raises_on_bad_json() -> None:
    with pytest.raises(PayloadParseError):
        parse_reading_groups(b"{")
