"""In-memory index of pending interval changes, mirrored from the durable change log."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from app.schemas import PendingChange
from datastore.document_store import ADDED, MODIFIED, REMOVED, DocumentStore, Watch
from models.records import DocumentChange
from services.errors import PendingChangeRejected, StoreError, SubscriptionError

logger = logging.getLogger(__name__)


class PendingChangeIndex:
    """Cache of at most one validated change per device.

    The change log is the source of truth: entries are admitted and evicted only
    by the log subscription, and the cache is rebuilt from a full resync each
    time the subscription is opened.
    """

    def __init__(self, store: DocumentStore, collection: str) -> None:
        self.store = store
        self.collection = collection
        self._changes: Dict[str, PendingChange] = {}
        self._lock = Lock()
        self._watch: Optional[Watch] = None
        self._watch_lock = Lock()

    @property
    def running(self) -> bool:
        watch = self._watch
        return watch is not None and watch.active

    def start(self) -> None:
        with self._watch_lock:
            if self._watch is not None:
                self._watch.unsubscribe()
            with self._lock:
                self._changes.clear()
            self._watch = self.store.collection(self.collection).on_snapshot(
                self.on_snapshot, self.on_subscription_error
            )
        logger.info("Listening for pending changes", extra={"collection": self.collection})

    def stop(self) -> None:
        with self._watch_lock:
            if self._watch is not None:
                self._watch.unsubscribe()
                self._watch = None
        with self._lock:
            self._changes.clear()

    def drain(self, timeout: float = 5.0) -> None:
        watch = self._watch
        if watch is not None:
            watch.drain(timeout)

    def on_snapshot(self, changes: List[DocumentChange]) -> None:
        for change in changes:
            if change.type in (ADDED, MODIFIED):
                self.on_change_added(change.document_id, change.data)
            elif change.type == REMOVED:
                self.on_change_removed(change.document_id)

    def on_change_added(self, device_id: str, document: Mapping[str, Any]) -> bool:
        try:
            change = _validate(device_id, document)
        except PendingChangeRejected as exc:
            with self._lock:
                self._changes.pop(device_id, None)
            logger.warning(
                "Rejected pending change; deleting it from the change log",
                extra={"device_id": device_id, "reason": exc.reason},
            )
            try:
                self.store.collection(self.collection).document(device_id).delete()
            except StoreError as store_exc:
                logger.error(
                    "Could not delete rejected pending change: %s",
                    store_exc,
                    extra={"device_id": device_id},
                )
            return False

        with self._lock:
            self._changes[device_id] = change
            pending = len(self._changes)
        logger.info(
            "Pending change queued (%d pending)",
            pending,
            extra={"device_id": device_id, "argument": change.to_argument()},
        )
        return True

    def on_change_removed(self, device_id: str) -> None:
        with self._lock:
            removed = self._changes.pop(device_id, None)
            pending = len(self._changes)
        if removed is not None:
            logger.info(
                "Pending change cleared (%d pending)", pending, extra={"device_id": device_id}
            )

    def on_subscription_error(self, exc: Exception) -> None:
        error = SubscriptionError(f"Change log stream failed: {exc}")
        logger.error("%s; resubscribing", error, extra={"collection": self.collection})
        try:
            self.start()
        except Exception:  # noqa: BLE001 - the next stream error retries again
            logger.exception(
                "Resubscribing to the change log failed", extra={"collection": self.collection}
            )

    def has(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._changes

    def get(self, device_id: str) -> Optional[PendingChange]:
        with self._lock:
            return self._changes.get(device_id)

    def snapshot(self) -> Dict[str, PendingChange]:
        with self._lock:
            return dict(self._changes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._changes)


def _validate(device_id: str, document: Mapping[str, Any]) -> PendingChange:
    try:
        return PendingChange.from_document(document)
    except ValueError as exc:
        raise PendingChangeRejected(device_id, _summarize(exc)) from exc


def _summarize(exc: ValueError) -> str:
    errors = getattr(exc, "errors", None)
    if not callable(errors):
        return str(exc)
    parts = []
    for error in errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "document"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)
