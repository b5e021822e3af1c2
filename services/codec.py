"""Positional sensor reading decoding against a versioned schema table."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Sequence, Tuple

from services.errors import UnknownFieldIndex

# Each version must start with every field of the version before it.
SCHEMA_VERSIONS: Mapping[int, Tuple[str, ...]] = {
    1: (
        "Timestamp",
        "Light level (lux)",
        "Loudness (dB)",
        "UV light level",
        "Pressure (mBar)",
        "Temperature (*C)",
        "Relative Humidity (%)",
        "PM1.0 (μg/m3)",
        "PM2.5 (μg/m3)",
        "PM4.0 (μg/m3)",
        "PM10.0 (μg/m3)",
        "CO2 (ppm)",
    ),
}

UNKNOWN_RAISE = "raise"
UNKNOWN_KEEP = "keep"


def validate_schema_versions(versions: Mapping[int, Sequence[str]]) -> int:
    """Check the table is complete and append-only; return the latest version."""
    if not versions:
        raise ValueError("Schema table defines no versions.")

    ordered = sorted(versions)
    if ordered != list(range(1, len(ordered) + 1)):
        raise ValueError(f"Schema versions must be contiguous from 1, got {ordered}.")

    previous: Sequence[str] = ()
    for version in ordered:
        fields = tuple(versions[version])
        if not fields:
            raise ValueError(f"Schema version {version} has no fields.")
        if len(set(fields)) != len(fields):
            raise ValueError(f"Schema version {version} repeats a field name.")
        if fields[: len(previous)] != tuple(previous):
            raise ValueError(
                f"Schema version {version} changes the meaning of existing positions."
            )
        previous = fields
    return ordered[-1]


LATEST_SCHEMA_VERSION = validate_schema_versions(SCHEMA_VERSIONS)


def field_name(index: int, version: int = LATEST_SCHEMA_VERSION) -> str:
    fields = _fields_for(version)
    if index < 0 or index >= len(fields):
        raise UnknownFieldIndex(index, None, version)
    return fields[index]


def unknown_field_key(index: int) -> str:
    return f"field_{index}"


def decode(
    raw_values: Sequence[Any],
    version: int = LATEST_SCHEMA_VERSION,
    on_unknown: str = UNKNOWN_RAISE,
) -> Dict[str, Any]:
    """Map a positional reading group to an ordered ``{field name: value}`` record.

    Positions past the end of the schema raise :class:`UnknownFieldIndex`, or
    with ``on_unknown="keep"`` are stored verbatim under ``field_<index>``.
    """
    if on_unknown not in (UNKNOWN_RAISE, UNKNOWN_KEEP):
        raise ValueError(f"Unsupported unknown-field policy {on_unknown!r}.")

    fields = _fields_for(version)
    record: Dict[str, Any] = {}
    for index, value in enumerate(raw_values):
        if index < len(fields):
            record[fields[index]] = value
        elif on_unknown == UNKNOWN_KEEP:
            record[unknown_field_key(index)] = value
        else:
            raise UnknownFieldIndex(index, value, version)
    return record


def _fields_for(version: int) -> Tuple[str, ...]:
    try:
        return tuple(SCHEMA_VERSIONS[version])
    except KeyError:
        raise ValueError(f"Unknown schema version {version}.") from None
