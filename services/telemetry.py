"""Wiring and lifecycle of the ingest and dispatch pipeline."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from broker.mock_pubsub import MockSubscription, build_default_subscription
from datastore.document_store import DocumentStore, build_default_store
from services.device_control import DeviceControlClient
from services.dispatcher import ConfigurationDispatcher
from services.errors import AuthError
from services.ingestion import IngestionDriver
from services.pending_index import PendingChangeIndex
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


class TelemetryService:
    """Owns the pending-change index, dispatcher and ingestion driver."""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        subscription: MockSubscription,
        client: DeviceControlClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self.subscription = subscription
        self.client = client
        self.index = PendingChangeIndex(store, settings.pending_collection)
        self.dispatcher = ConfigurationDispatcher(
            index=self.index,
            store=store,
            client=client,
            applied_collection=settings.applied_collection,
            workers=settings.dispatcher_workers,
        )
        self.driver = IngestionDriver(
            store=store,
            dispatcher=self.dispatcher,
            status_collection=settings.status_collection,
        )

    def start(self) -> None:
        try:
            self.client.ensure_login()
        except AuthError as exc:
            # Ingestion still runs; dispatch retries the login on the next online event.
            logger.error("Device cloud login failed: %s", exc)
        self.index.start()
        self.driver.start(self.subscription)

    def shutdown(self) -> None:
        """Stop listening and release worker threads and connections."""
        self.driver.stop()
        self.index.stop()
        self.dispatcher.shutdown()
        self.client.close()


@lru_cache
def build_default_service() -> TelemetryService:
    """Factory that wires the service with the in-process store and queue."""
    settings = get_settings()
    login_path: Optional[Path] = (
        Path(settings.device_login_path) if settings.device_login_path else None
    )
    client = DeviceControlClient(
        base_url=settings.device_api_base_url,
        timeout=settings.device_call_timeout,
        credentials_path=login_path,
    )
    return TelemetryService(
        settings=settings,
        store=build_default_store(),
        subscription=build_default_subscription(),
        client=client,
    )
