"""Delivery of pending interval changes to devices that report themselves online."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional

from app.schemas import AppliedConfiguration, PendingChange
from datastore.document_store import DocumentStore
from services.device_control import DeviceControlClient
from services.errors import AuthError, DeviceControlError, StoreError
from services.pending_index import PendingChangeIndex

logger = logging.getLogger(__name__)

ADJUST_INTERVALS_FUNCTION = "adjustIntervals"


class ConfigurationDispatcher:
    """Applies a device's pending change when it becomes reachable.

    The pending entry is never evicted here: on confirmed success the change-log
    document is deleted and the index follows through its removal callback.
    Failed calls leave the entry in place for the next reachability signal.
    """

    def __init__(
        self,
        index: PendingChangeIndex,
        store: DocumentStore,
        client: DeviceControlClient,
        applied_collection: str,
        workers: int = 4,
    ) -> None:
        self.index = index
        self.store = store
        self.client = client
        self.applied_collection = applied_collection
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch")
        self._in_flight: Dict[str, object] = {}
        self._in_flight_lock = Lock()

    def on_device_reachable(self, device_id: str) -> Optional[Future[bool]]:
        change = self.index.get(device_id)
        if change is None:
            return None

        token = object()
        with self._in_flight_lock:
            if device_id in self._in_flight:
                logger.info(
                    "Dispatch already in flight; ignoring reachability signal",
                    extra={"device_id": device_id},
                )
                return None
            self._in_flight[device_id] = token

        try:
            future = self.executor.submit(self._run, device_id, change, token)
        except RuntimeError:
            self._clear_in_flight(device_id, token)
            logger.warning("Dispatcher is shut down", extra={"device_id": device_id})
            return None
        # Covers jobs cancelled before they start.
        future.add_done_callback(
            lambda _f, did=device_id, tok=token: self._clear_in_flight(did, tok)
        )
        return future

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_in_flight(self, device_id: str, token: object) -> None:
        # Only the dispatch that set the marker may clear it.
        with self._in_flight_lock:
            if self._in_flight.get(device_id) is token:
                del self._in_flight[device_id]

    def _run(self, device_id: str, change: PendingChange, token: object) -> bool:
        try:
            return self._dispatch(device_id, change)
        finally:
            self._clear_in_flight(device_id, token)

    def _dispatch(self, device_id: str, change: PendingChange) -> bool:
        argument = change.to_argument()
        context = {"device_id": device_id, "argument": argument}
        try:
            result = self.client.call_function(device_id, ADJUST_INTERVALS_FUNCTION, argument)
        except AuthError as exc:
            logger.error("Dispatch disabled until next login: %s", exc, extra=context)
            return False
        except DeviceControlError as exc:
            logger.error("Interval update not applied: %s", exc, extra=context)
            return False

        logger.info(
            "Interval update applied (return value %s)", result.return_value, extra=context
        )
        try:
            self._record_applied(device_id, change)
            self._clear_pending(device_id, change)
        except StoreError as exc:
            logger.error("Could not record applied intervals: %s", exc, extra=context)
            return False
        return True

    def _record_applied(self, device_id: str, change: PendingChange) -> None:
        record = AppliedConfiguration.from_change(change, applied_at=datetime.now(timezone.utc))
        self.store.collection(self.applied_collection).document(device_id).set(
            record.model_dump(by_alias=True, mode="json")
        )

    def _clear_pending(self, device_id: str, change: PendingChange) -> None:
        # A newer change may have landed while the call was in flight; keep it.
        if self.index.get(device_id) != change:
            logger.info(
                "Pending change was replaced during dispatch; keeping the newer one",
                extra={"device_id": device_id},
            )
            return
        self.store.collection(self.index.collection).document(device_id).delete()
