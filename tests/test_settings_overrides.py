from __future__ import annotations

from typing import Iterable

from broker.mock_pubsub import build_default_subscription
from datastore.document_store import build_default_store
from services.telemetry import build_default_service
from settings import get_settings


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_defaults_match_deployment(monkeypatch) -> None:
    for name in (
        "GCP_PROJECT_ID",
        "PUBSUB_SUBSCRIPTION",
        "PENDING_COLLECTION",
        "DEVICE_CALL_TIMEOUT_SECONDS",
        "DISPATCHER_WORKER_COUNT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.project_id == "c177-sensors"
        assert settings.subscription_name == "projects/c177-sensors/subscriptions/ingest"
        assert settings.pending_collection == "pending-interval-updates"
        assert settings.applied_collection == "updated-intervals"
        assert settings.device_call_timeout == 10.0
        assert settings.dispatcher_workers == 4
    finally:
        get_settings.cache_clear()


def test_invalid_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DEVICE_CALL_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("DISPATCHER_WORKER_COUNT", "-3")
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.device_call_timeout == 10.0
        assert settings.dispatcher_workers == 4
        assert settings.log_level == "DEBUG"
    finally:
        get_settings.cache_clear()


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "documents.json"

    monkeypatch.setenv("GCP_PROJECT_ID", "field-trial")
    monkeypatch.setenv("PENDING_COLLECTION", "updates")
    monkeypatch.setenv("DOCUMENT_STORE_PERSISTENCE_PATH", str(store_path))
    monkeypatch.setenv("DEVICE_LOGIN_PATH", "")
    monkeypatch.setenv("DEVICE_CALL_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("DISPATCHER_WORKER_COUNT", "2")

    caches = (
        get_settings,
        build_default_store,
        build_default_subscription,
        build_default_service,
    )
    _clear_caches(caches)

    service = build_default_service()

    try:
        assert service.settings.subscription_name == "projects/field-trial/subscriptions/ingest"
        assert service.settings.device_login_path is None
        assert service.subscription.name == "projects/field-trial/subscriptions/ingest"
        assert service.store.persistence_path == store_path
        assert service.index.collection == "updates"
        assert service.dispatcher.executor._max_workers == 2
    finally:
        service.shutdown()
        service.subscription.close()
        _clear_caches(caches)
