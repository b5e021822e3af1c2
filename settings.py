from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_PROJECT_ID_ENV = "GCP_PROJECT_ID"
_SUBSCRIPTION_ENV = "PUBSUB_SUBSCRIPTION"
_SERVICE_ACCOUNT_ENV = "GCP_SERVICE_ACCOUNT_KEY_PATH"
_DEVICE_LOGIN_ENV = "DEVICE_LOGIN_PATH"
_DEVICE_API_URL_ENV = "DEVICE_API_BASE_URL"
_DEVICE_TIMEOUT_ENV = "DEVICE_CALL_TIMEOUT_SECONDS"
_WORKER_COUNT_ENV = "DISPATCHER_WORKER_COUNT"
_PENDING_COLLECTION_ENV = "PENDING_COLLECTION"
_APPLIED_COLLECTION_ENV = "APPLIED_COLLECTION"
_STATUS_COLLECTION_ENV = "STATUS_COLLECTION"
_STORE_PATH_ENV = "DOCUMENT_STORE_PERSISTENCE_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    project_id: str
    subscription_name: str
    service_account_key_path: str
    device_login_path: Optional[str]
    device_api_base_url: str
    device_call_timeout: float
    dispatcher_workers: int
    pending_collection: str
    applied_collection: str
    status_collection: str
    store_persistence_path: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_worker_count(default: int) -> int:
    value = os.getenv(_WORKER_COUNT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_timeout(default: float) -> float:
    value = os.getenv(_DEVICE_TIMEOUT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    project_id = _read_str_env(_PROJECT_ID_ENV, "c177-sensors")
    return Settings(
        project_id=project_id,
        subscription_name=_read_str_env(
            _SUBSCRIPTION_ENV, f"projects/{project_id}/subscriptions/ingest"
        ),
        service_account_key_path=_read_str_env(_SERVICE_ACCOUNT_ENV, "./gcp_private_key.json"),
        device_login_path=_read_optional_env(_DEVICE_LOGIN_ENV, "./particle_login.json"),
        device_api_base_url=_read_str_env(_DEVICE_API_URL_ENV, "https://api.particle.io"),
        device_call_timeout=_read_timeout(10.0),
        dispatcher_workers=_read_worker_count(4),
        pending_collection=_read_str_env(_PENDING_COLLECTION_ENV, "pending-interval-updates"),
        applied_collection=_read_str_env(_APPLIED_COLLECTION_ENV, "updated-intervals"),
        status_collection=_read_str_env(_STATUS_COLLECTION_ENV, "device-status"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/documents.json"),
        log_level=_read_log_level("INFO"),
    )
