from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Optional
from uuid import uuid4

from settings import get_settings

logger = logging.getLogger(__name__)

MessageCallback = Callable[["Message"], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class Message:
    """A delivered queue message; must be acked exactly once after processing."""

    id: str
    data: bytes
    attributes: Dict[str, str] = field(default_factory=dict)
    delivery_attempt: int = 1
    _subscription: Optional["MockSubscription"] = field(default=None, repr=False)
    _settled: bool = field(default=False, repr=False)

    def ack(self) -> None:
        if self._settle("ack") and self._subscription is not None:
            self._subscription._acknowledge(self)

    def nack(self) -> None:
        """Return the message to the subscription for redelivery."""
        if self._settle("nack") and self._subscription is not None:
            self._subscription._redeliver(self)

    def _settle(self, action: str) -> bool:
        if self._settled:
            logger.warning(
                "Ignoring %s of an already settled message", action, extra={"message_id": self.id}
            )
            return False
        self._settled = True
        return True


class MockSubscription:
    """At-least-once subscription delivering messages serially to one callback."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pubsub")
        self._callback: Optional[MessageCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._backlog: list[Message] = []
        self._outstanding: Dict[str, Message] = {}
        self._acked: list[str] = []
        self._lock = Lock()
        self._closed = False

    @property
    def acked_ids(self) -> list[str]:
        with self._lock:
            return list(self._acked)

    @property
    def outstanding_count(self) -> int:
        with self._lock:
            return len(self._outstanding) + len(self._backlog)

    def publish(self, data: bytes, attributes: Optional[Dict[str, str]] = None) -> str:
        message_attributes = dict(attributes or {})
        message_attributes.setdefault(
            "published_at", datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        )
        message = Message(id=uuid4().hex, data=bytes(data), attributes=message_attributes)
        self._enqueue(message)
        return message.id

    def subscribe(
        self, callback: MessageCallback, on_error: Optional[ErrorCallback] = None
    ) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Subscription {self.name!r} is closed.")
            self._callback = callback
            self._on_error = on_error
            backlog, self._backlog = self._backlog, []
        for message in backlog:
            self._schedule(message)

    def unsubscribe(self) -> None:
        with self._lock:
            self._callback = None
            self._on_error = None

    def drain(self, timeout: float = 5.0) -> None:
        """Block until every message scheduled so far has been handed to the callback."""
        with self._lock:
            if self._closed:
                return
            future = self._executor.submit(lambda: None)
        future.result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._callback = None
        self._executor.shutdown(wait=True)

    def _enqueue(self, message: Message) -> None:
        with self._lock:
            if self._callback is None:
                self._backlog.append(message)
                return
        self._schedule(message)

    def _schedule(self, message: Message) -> None:
        message._subscription = self
        with self._lock:
            if self._closed:
                return
            self._outstanding[message.id] = message
            self._executor.submit(self._deliver, message)

    def _deliver(self, message: Message) -> None:
        with self._lock:
            callback = self._callback
            on_error = self._on_error
        if callback is None:
            with self._lock:
                self._outstanding.pop(message.id, None)
                self._backlog.append(message)
            return
        try:
            callback(message)
        except Exception as exc:  # noqa: BLE001 - stream errors are reported, not raised
            if on_error is not None:
                on_error(exc)
            else:
                logger.exception(
                    "Subscription callback failed", extra={"message_id": message.id}
                )

    def _acknowledge(self, message: Message) -> None:
        with self._lock:
            self._outstanding.pop(message.id, None)
            self._acked.append(message.id)

    def _redeliver(self, message: Message) -> None:
        with self._lock:
            self._outstanding.pop(message.id, None)
        retry = Message(
            id=message.id,
            data=message.data,
            attributes=dict(message.attributes),
            delivery_attempt=message.delivery_attempt + 1,
        )
        self._enqueue(retry)


@lru_cache
def build_default_subscription(name: Optional[str] = None) -> MockSubscription:
    settings = get_settings()
    return MockSubscription(name=settings.subscription_name if name is None else name)
