"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

STATUS_EVENT_TYPE = "device/status"


@dataclass(frozen=True, slots=True)
class Envelope:
    """One queue-delivered event with its routing attributes and raw payload."""

    id: str
    device_id: str
    event_type: str
    payload: bytes
    published_at: Optional[str] = None

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    def to_document(self) -> Dict[str, Any]:
        """Raw envelope fields as stored for unstructured events."""
        return {
            "id": self.id,
            "device_id": self.device_id,
            "event_type": self.event_type,
            "data": self.text,
            "published_at": self.published_at,
        }


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """Device connectivity report; ``online`` is None for unrecognised states."""

    online: Optional[bool]
    raw: str

    @property
    def reachable(self) -> bool:
        return self.online is True


@dataclass(frozen=True, slots=True)
class ReadingEvent:
    groups: List[List[Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OpaqueEvent:
    envelope: Envelope


ClassifiedEvent = Union[StatusEvent, ReadingEvent, OpaqueEvent]


@dataclass(frozen=True, slots=True)
class DocumentChange:
    """A single entry of a live snapshot batch from the document store."""

    type: str
    document_id: str
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IngestionOutcome:
    """What the ingestion driver did with one envelope."""

    message_id: str
    kind: str
    documents_written: int = 0
    failures: int = 0
    dispatched: bool = False
