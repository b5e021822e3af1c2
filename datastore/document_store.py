from __future__ import annotations

import copy
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from models.records import DocumentChange
from services.errors import StoreError
from settings import get_settings

logger = logging.getLogger(__name__)

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"

SnapshotCallback = Callable[[List[DocumentChange]], None]
ErrorCallback = Callable[[Exception], None]


class Watch:
    """Live listener on one collection; batches are delivered serially on its own thread."""

    def __init__(
        self,
        store: "DocumentStore",
        collection: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.collection = collection
        self._store = store
        self._callback = callback
        self._on_error = on_error
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"watch-{collection}"
        )
        self._active = True
        self._lock = Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._store._remove_watch(self)
        self._executor.shutdown(wait=False)

    def drain(self, timeout: float = 5.0) -> None:
        """Block until every batch queued so far has been delivered."""
        with self._lock:
            if not self._active:
                return
            future = self._executor.submit(lambda: None)
        future.result(timeout=timeout)

    def fail(self, exc: Exception) -> None:
        """Report a stream error to the listener, as a broken connection would."""
        self._submit(lambda: self._deliver_error(exc))

    def _enqueue(self, changes: List[DocumentChange]) -> None:
        if changes:
            self._submit(lambda: self._deliver(changes))

    def _submit(self, job: Callable[[], None]) -> None:
        with self._lock:
            if not self._active:
                return
            self._executor.submit(job)

    def _deliver(self, changes: List[DocumentChange]) -> None:
        if not self._active:
            return
        try:
            self._callback(changes)
        except Exception as exc:  # noqa: BLE001 - listener faults go to its error channel
            self._deliver_error(exc)

    def _deliver_error(self, exc: Exception) -> None:
        if self._on_error is None:
            logger.error(
                "Snapshot listener failed: %s",
                exc,
                extra={"collection": self.collection},
            )
            return
        self._on_error(exc)


class DocumentReference:

    def __init__(self, store: "DocumentStore", collection: str, document_id: str) -> None:
        self._store = store
        self.collection = collection
        self.id = document_id

    def set(self, document: Mapping[str, Any], merge: bool = False) -> None:
        self._store._write(self.collection, self.id, document, merge=merge)

    def get(self) -> Optional[Dict[str, Any]]:
        return self._store._read(self.collection, self.id)

    def delete(self) -> None:
        self._store._delete(self.collection, self.id)


class CollectionReference:

    def __init__(self, store: "DocumentStore", name: str) -> None:
        self._store = store
        self.name = name

    def add(self, document: Mapping[str, Any]) -> str:
        document_id = uuid4().hex
        self._store._write(self.name, document_id, document, merge=False)
        return document_id

    def document(self, document_id: str) -> DocumentReference:
        if not document_id or "/" in document_id:
            raise StoreError(f"Invalid document id {document_id!r}.")
        return DocumentReference(self._store, self.name, document_id)

    def stream(self) -> Dict[str, Dict[str, Any]]:
        return self._store._read_all(self.name)

    def on_snapshot(
        self, callback: SnapshotCallback, on_error: Optional[ErrorCallback] = None
    ) -> Watch:
        """Listen for changes; the first batch lists every existing document as added."""
        return self._store._add_watch(self.name, callback, on_error)


class DocumentStore:
    """In-process document store with collections, merge writes and live listeners."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._watches: Dict[str, List[Watch]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def collection(self, name: str) -> CollectionReference:
        if not name or "/" in name:
            raise StoreError(f"Invalid collection name {name!r}.")
        return CollectionReference(self, name)

    def close(self) -> None:
        with self._lock:
            watches = [watch for group in self._watches.values() for watch in group]
        for watch in watches:
            watch.unsubscribe()

    def _write(
        self, collection: str, document_id: str, document: Mapping[str, Any], merge: bool
    ) -> None:
        if not isinstance(document, Mapping):
            raise StoreError(f"Document for {collection}/{document_id} must be a mapping.")
        payload = copy.deepcopy(dict(document))
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            existing = documents.get(document_id)
            if merge and existing is not None:
                stored = {**existing, **payload}
            else:
                stored = payload
            documents[document_id] = stored
            try:
                self._persist()
            except OSError as exc:
                if existing is None:
                    documents.pop(document_id, None)
                else:
                    documents[document_id] = existing
                raise StoreError(
                    f"Could not persist {collection}/{document_id}: {exc}"
                ) from exc
            change = DocumentChange(
                type=MODIFIED if existing is not None else ADDED,
                document_id=document_id,
                data=copy.deepcopy(stored),
            )
            self._notify(collection, [change])

    def _read(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collections.get(collection, {}).get(document_id)
            if document is None:
                return None
            return copy.deepcopy(document)

    def _read_all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, {}))

    def _delete(self, collection: str, document_id: str) -> None:
        with self._lock:
            documents = self._collections.get(collection, {})
            removed = documents.pop(document_id, None)
            if removed is None:
                return
            try:
                self._persist()
            except OSError as exc:
                documents[document_id] = removed
                raise StoreError(
                    f"Could not persist deletion of {collection}/{document_id}: {exc}"
                ) from exc
            self._notify(
                collection,
                [DocumentChange(type=REMOVED, document_id=document_id, data=removed)],
            )

    def _add_watch(
        self, collection: str, callback: SnapshotCallback, on_error: Optional[ErrorCallback]
    ) -> Watch:
        watch = Watch(self, collection, callback, on_error)
        with self._lock:
            initial = [
                DocumentChange(type=ADDED, document_id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self._collections.get(collection, {}).items()
            ]
            self._watches.setdefault(collection, []).append(watch)
            watch._enqueue(initial)
        return watch

    def _remove_watch(self, watch: Watch) -> None:
        with self._lock:
            watches = self._watches.get(watch.collection, [])
            if watch in watches:
                watches.remove(watch)

    def _notify(self, collection: str, changes: List[DocumentChange]) -> None:
        # Enqueued under the store lock so every listener sees writes in commit order.
        for watch in self._watches.get(collection, []):
            watch._enqueue(changes)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(
            json.dumps(self._collections, indent=2, sort_keys=True, default=str)
        )

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable document store file %s", self.persistence_path
            )
            data = {}

        for name, documents in data.items():
            if isinstance(documents, dict):
                self._collections[name] = documents


@lru_cache
def build_default_store(path: Optional[str] = None) -> DocumentStore:
    settings = get_settings()
    store_path = settings.store_persistence_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return DocumentStore(persistence_path=persistence)
