"""Unit tests for the in-process document store."""

from __future__ import annotations

import json
import threading
from typing import List

import pytest

from datastore.document_store import ADDED, MODIFIED, REMOVED, DocumentStore
from models.records import DocumentChange
from services.errors import StoreError


class Recorder:
    def __init__(self) -> None:
        self.batches: List[List[DocumentChange]] = []
        self.errors: List[Exception] = []

    def __call__(self, changes: List[DocumentChange]) -> None:
        self.batches.append(list(changes))

    def on_error(self, exc: Exception) -> None:
        self.errors.append(exc)

    @property
    def changes(self) -> List[DocumentChange]:
        return [change for batch in self.batches for change in batch]


def test_add_assigns_ids_and_returns_copies() -> None:
    store = DocumentStore()
    readings = store.collection("device-1")

    first = readings.add({"Timestamp": 1})
    second = readings.add({"Timestamp": 2})

    assert first != second
    stored = readings.document(first).get()
    assert stored == {"Timestamp": 1}

    stored["Timestamp"] = 99
    assert readings.document(first).get() == {"Timestamp": 1}


def test_set_with_merge_keeps_unrelated_fields() -> None:
    store = DocumentStore()
    status = store.collection("device-status").document("device-1")

    status.set({"Timestamp": "t1", "online": True, "firmware": "1.2"})
    status.set({"Timestamp": "t2", "online": False}, merge=True)

    assert status.get() == {"Timestamp": "t2", "online": False, "firmware": "1.2"}

    status.set({"Timestamp": "t3"})
    assert status.get() == {"Timestamp": "t3"}


def test_get_and_delete_missing_document() -> None:
    store = DocumentStore()
    missing = store.collection("updates").document("nobody")

    assert missing.get() is None
    missing.delete()


def test_invalid_names_are_rejected() -> None:
    store = DocumentStore()

    with pytest.raises(StoreError):
        store.collection("")
    with pytest.raises(StoreError):
        store.collection("a/b")
    with pytest.raises(StoreError):
        store.collection("ok").document("x/y")
    with pytest.raises(StoreError):
        store.collection("ok").add(["not", "a", "mapping"])  # type: ignore[arg-type]


def test_persists_to_disk_and_reloads(tmp_path) -> None:
    path = tmp_path / "documents.json"
    store = DocumentStore(persistence_path=path)
    store.collection("pending-interval-updates").document("device-1").set({"a": 120000})

    payload = json.loads(path.read_text())
    assert payload["pending-interval-updates"]["device-1"] == {"a": 120000}

    reloaded = DocumentStore(persistence_path=path)
    assert reloaded.collection("pending-interval-updates").document("device-1").get() == {
        "a": 120000
    }


def test_unreadable_persistence_file_starts_empty(tmp_path) -> None:
    path = tmp_path / "documents.json"
    path.write_text("{not json")

    store = DocumentStore(persistence_path=path)

    assert store.collection("anything").stream() == {}


def test_snapshot_starts_with_existing_documents_then_streams_changes() -> None:
    store = DocumentStore()
    updates = store.collection("updates")
    updates.document("device-1").set({"a": 120000})
    recorder = Recorder()

    watch = updates.on_snapshot(recorder, recorder.on_error)
    watch.drain()
    updates.document("device-2").set({"a": 180000})
    updates.document("device-2").set({"b": 5}, merge=True)
    updates.document("device-1").delete()
    watch.drain()

    assert recorder.batches[0] == [
        DocumentChange(type=ADDED, document_id="device-1", data={"a": 120000})
    ]
    assert [(c.type, c.document_id) for c in recorder.changes[1:]] == [
        (ADDED, "device-2"),
        (MODIFIED, "device-2"),
        (REMOVED, "device-1"),
    ]
    assert recorder.changes[2].data == {"a": 180000, "b": 5}
    watch.unsubscribe()


def test_unsubscribed_watch_receives_nothing() -> None:
    store = DocumentStore()
    updates = store.collection("updates")
    recorder = Recorder()
    watch = updates.on_snapshot(recorder)
    watch.drain()

    watch.unsubscribe()
    updates.document("device-1").set({"a": 1})

    assert watch.active is False
    assert recorder.changes == []


def test_listener_may_write_to_the_store_without_deadlock() -> None:
    store = DocumentStore()
    updates = store.collection("updates")
    done = threading.Event()

    def delete_everything(changes: List[DocumentChange]) -> None:
        for change in changes:
            if change.type == REMOVED:
                done.set()
            else:
                updates.document(change.document_id).delete()

    watch = updates.on_snapshot(delete_everything)
    updates.document("device-1").set({"a": 1})

    assert done.wait(timeout=5)
    assert updates.document("device-1").get() is None
    watch.unsubscribe()


def test_listener_failures_go_to_error_callback() -> None:
    store = DocumentStore()
    recorder = Recorder()

    def explode(_changes: List[DocumentChange]) -> None:
        raise RuntimeError("boom")

    watch = store.collection("updates").on_snapshot(explode, recorder.on_error)
    store.collection("updates").document("device-1").set({"a": 1})
    watch.drain()

    assert len(recorder.errors) == 1
    assert str(recorder.errors[0]) == "boom"
    watch.unsubscribe()


def test_failed_persistence_rolls_back_and_notifies_nobody(tmp_path) -> None:
    path = tmp_path / "documents.json"
    path.mkdir()
    store = DocumentStore(persistence_path=path)
    updates = store.collection("updates")
    recorder = Recorder()
    watch = updates.on_snapshot(recorder, recorder.on_error)

    with pytest.raises(StoreError, match="Could not persist"):
        updates.document("device-1").set({"a": 120000})
    with pytest.raises(StoreError):
        updates.add({"a": 1})
    watch.drain()

    assert updates.stream() == {}
    assert recorder.changes == []
    watch.unsubscribe()


def test_failed_persistence_restores_previous_document(tmp_path) -> None:
    path = tmp_path / "documents.json"
    store = DocumentStore(persistence_path=path)
    status = store.collection("device-status").document("device-1")
    status.set({"online": True})

    path.unlink()
    path.mkdir()

    with pytest.raises(StoreError):
        status.set({"online": False}, merge=True)
    with pytest.raises(StoreError, match="deletion"):
        status.delete()

    assert status.get() == {"online": True}
