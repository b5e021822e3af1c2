"""Exception hierarchy for the ingest and dispatch pipeline.

None of these are fatal to the process; each one degrades the handling of a
single envelope or a single device.
"""

from __future__ import annotations

from typing import Any, Optional


class TelemetryError(Exception):
    """Base class for every error raised by this package."""


class PayloadParseError(TelemetryError):
    """Payload is not JSON, or not shaped as an array of reading arrays."""


class UnknownFieldIndex(TelemetryError):
    """A reading value sits at a position the schema table does not name."""

    def __init__(self, index: int, value: Any, schema_version: int) -> None:
        super().__init__(
            f"Reading position {index} is not defined by schema version {schema_version}."
        )
        self.index = index
        self.value = value
        self.schema_version = schema_version


class PendingChangeRejected(TelemetryError):
    """A change-log document failed the pending configuration constraints."""

    def __init__(self, device_id: str, reason: str) -> None:
        super().__init__(f"Invalid pending change for {device_id!r}: {reason}")
        self.device_id = device_id
        self.reason = reason


class DeviceControlError(TelemetryError):
    """The remote function call on a device did not succeed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(DeviceControlError):
    """Login to the device-control API failed or the token was refused."""


class SubscriptionError(TelemetryError):
    """A queue or change-log stream reported an error."""


class StoreError(TelemetryError):
    """A document store operation was given an invalid collection, id or document."""
