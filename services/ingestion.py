"""Queue-driven ingestion: decode, classify, persist, acknowledge."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from broker.mock_pubsub import Message, MockSubscription
from datastore.document_store import DocumentStore
from models.records import (
    Envelope,
    IngestionOutcome,
    OpaqueEvent,
    ReadingEvent,
    StatusEvent,
)
from services import codec
from services.classifier import classify
from services.dispatcher import ConfigurationDispatcher
from services.errors import PayloadParseError, StoreError

logger = logging.getLogger(__name__)


def envelope_from_message(message: Message) -> Envelope:
    attributes = message.attributes or {}
    device_id = (attributes.get("device_id") or "").strip()
    event_type = (attributes.get("event") or "").strip()
    if not device_id:
        raise PayloadParseError("Message has no device_id attribute.")
    if not event_type:
        raise PayloadParseError("Message has no event attribute.")
    return Envelope(
        id=message.id,
        device_id=device_id,
        event_type=event_type,
        payload=message.data or b"",
        published_at=attributes.get("published_at"),
    )


class IngestionDriver:
    """Handles each delivered message serially and acks it once handling is done."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: ConfigurationDispatcher,
        status_collection: str,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.status_collection = status_collection
        self._subscription: Optional[MockSubscription] = None

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self, subscription: MockSubscription) -> None:
        self._subscription = subscription
        subscription.subscribe(self.handle_message, self._on_stream_error)
        logger.info("Listening for telemetry on %s", subscription.name)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def handle_message(self, message: Message) -> IngestionOutcome:
        outcome = IngestionOutcome(message_id=message.id, kind="invalid")
        try:
            envelope = envelope_from_message(message)
        except PayloadParseError as exc:
            logger.warning(
                "Dropping undeliverable message: %s", exc, extra={"message_id": message.id}
            )
            message.ack()
            return outcome

        context = {
            "message_id": envelope.id,
            "device_id": envelope.device_id,
            "event_type": envelope.event_type,
        }
        logger.debug("Received event", extra=context)
        try:
            event = classify(envelope)
            if isinstance(event, StatusEvent):
                outcome.kind = "status"
                self._store_status(envelope, event, outcome)
                if event.reachable:
                    future = self.dispatcher.on_device_reachable(envelope.device_id)
                    outcome.dispatched = future is not None
            elif isinstance(event, ReadingEvent):
                outcome.kind = "readings"
                self._store_readings(envelope, event, outcome)
            elif isinstance(event, OpaqueEvent):
                outcome.kind = "opaque"
                self._write(
                    envelope.device_id, None, event.envelope.to_document(), outcome, context
                )
        finally:
            message.ack()

        logger.info(
            "Processed %s event (%d written, %d failed)",
            outcome.kind,
            outcome.documents_written,
            outcome.failures,
            extra=context,
        )
        return outcome

    def _store_status(
        self, envelope: Envelope, event: StatusEvent, outcome: IngestionOutcome
    ) -> None:
        record: Dict[str, Any] = {"Timestamp": envelope.published_at or _now()}
        if event.online is None:
            record["data"] = event.raw
        else:
            record["online"] = event.online
        self._write(
            self.status_collection,
            envelope.device_id,
            record,
            outcome,
            {"message_id": envelope.id, "device_id": envelope.device_id},
            merge=True,
        )

    def _store_readings(
        self, envelope: Envelope, event: ReadingEvent, outcome: IngestionOutcome
    ) -> None:
        context = {"message_id": envelope.id, "device_id": envelope.device_id}
        known = len(codec.SCHEMA_VERSIONS[codec.LATEST_SCHEMA_VERSION])
        for group in event.groups:
            record = codec.decode(group, on_unknown=codec.UNKNOWN_KEEP)
            if len(group) > known:
                logger.warning(
                    "Reading group has positions beyond the schema; stored verbatim",
                    extra={**context, "field_index": known},
                )
            self._write(envelope.device_id, None, record, outcome, context)

    def _write(
        self,
        collection: str,
        document_id: Optional[str],
        document: Dict[str, Any],
        outcome: IngestionOutcome,
        context: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        try:
            target = self.store.collection(collection)
            if document_id is None:
                target.add(document)
            else:
                target.document(document_id).set(document, merge=merge)
        except StoreError as exc:
            outcome.failures += 1
            logger.error(
                "Document write failed: %s", exc, extra={**context, "collection": collection}
            )
            return
        outcome.documents_written += 1

    def _on_stream_error(self, exc: Exception) -> None:
        logger.error("Telemetry subscription error: %s", exc, exc_info=exc)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
