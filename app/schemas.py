"""Pydantic schemas for persisted documents and the HTTP API layer."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

MIN_SENSING_INTERVAL_MS = 120_000


class PendingChange(BaseModel):
    """A validated sampling-interval update awaiting delivery to a device.

    Stored in the change log under the short keys ``a``, ``b`` and ``c``; the
    later document shape carries a single ``input`` string ``"[a,b,c]"``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    sensing_interval_ms: StrictInt = Field(..., alias="a", ge=MIN_SENSING_INTERVAL_MS)
    interval_compensation_ms: StrictInt = Field(default=0, alias="b", ge=0)
    readings_to_collate: StrictInt = Field(default=1, alias="c", ge=1)

    @field_validator(
        "sensing_interval_ms", "interval_compensation_ms", "readings_to_collate", mode="before"
    )
    @classmethod
    def whole_floats_to_int(cls, value: Any) -> Any:
        # Document stores that keep numbers as doubles return 120000 as 120000.0.
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "PendingChange":
        """Validate a raw change-log document, treating null fields as absent."""
        fields = {key: value for key, value in document.items() if value is not None}
        if "a" not in fields and "input" in fields:
            fields = _parse_input_field(fields["input"])
        return cls.model_validate(fields)

    def to_argument(self) -> str:
        """Serialize for the device function call: ``[interval,compensation,collate]``."""
        return (
            f"[{self.sensing_interval_ms},"
            f"{self.interval_compensation_ms},"
            f"{self.readings_to_collate}]"
        )


def _parse_input_field(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, str):
        raise ValueError("input must be a string of the form [a,b,c]")
    try:
        values = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("input is not a bracketed list") from exc
    if not isinstance(values, list) or not 1 <= len(values) <= 3:
        raise ValueError("input must list between one and three values")
    return dict(zip(("a", "b", "c"), values))


class AppliedConfiguration(BaseModel):
    """Last configuration a device confirmed, keyed by device id."""

    model_config = ConfigDict(populate_by_name=True)

    sensing_interval_ms: int = Field(..., alias="a")
    interval_compensation_ms: int = Field(..., alias="b")
    readings_to_collate: int = Field(..., alias="c")
    argument: str
    applied_at: datetime = Field(..., alias="appliedAt")

    @classmethod
    def from_change(cls, change: PendingChange, applied_at: datetime) -> "AppliedConfiguration":
        return cls(
            sensing_interval_ms=change.sensing_interval_ms,
            interval_compensation_ms=change.interval_compensation_ms,
            readings_to_collate=change.readings_to_collate,
            argument=change.to_argument(),
            applied_at=applied_at,
        )


class DeviceCredentials(BaseModel):
    """Account login for the device-control API."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class FunctionCallResult(BaseModel):
    """Response body of a remote device function call."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    connected: bool = True
    return_value: Optional[int] = None


class HealthResponse(BaseModel):
    """Operational status of the running pipeline."""

    status: str
    pending_changes: int = Field(..., ge=0)
    ingestion_running: bool
    change_log_running: bool
