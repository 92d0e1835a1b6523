"""Progress sinks that fan workflow events out to subscribers."""

import json
import queue
import threading
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .logging_config import LOGGER
from .models import ProgressEvent, Severity

DEFAULT_MAX_PENDING = 256

# One short attempt per delivery
_MANAGEMENT_CLIENT_CONFIG = Config(
    connect_timeout=2, read_timeout=5, retries={"max_attempts": 1}
)


class ProgressSink(Protocol):
    """Anything the workflow can report progress to."""

    def publish(self, message: str, severity: Severity | str = Severity.INFO) -> ProgressEvent: ...


class NullProgressSink:
    """Discards every event."""

    def publish(self, message: str, severity: Severity | str = Severity.INFO) -> ProgressEvent:
        return ProgressEvent(message=message, severity=Severity(severity))


class LoggingProgressSink:
    """Writes every event to the service logger. Used by the operator scripts."""

    _LEVELS = {
        Severity.INFO: LOGGER.info,
        Severity.SUCCESS: LOGGER.info,
        Severity.WARNING: LOGGER.warning,
        Severity.ERROR: LOGGER.error,
    }

    def publish(self, message: str, severity: Severity | str = Severity.INFO) -> ProgressEvent:
        event = ProgressEvent(message=message, severity=Severity(severity))
        if message:
            self._LEVELS[event.severity]("[%s] %s", event.severity.value, message)
        return event


class SubscriberGone(Exception):
    """Raised by a subscriber whose connection no longer exists."""


class Subscriber(Protocol):
    connection_id: str

    def send(self, payload: str) -> None: ...

    def ping(self) -> bool: ...

    def terminate(self) -> None: ...


class BroadcastProgressSink:
    """Best-effort broadcast to every registered subscriber.

    Subscribers are held in a lock-protected map owned by the transport
    layer. ``publish`` only enqueues the event; a daemon thread delivers it,
    so a slow subscriber delays other subscribers but never the publisher.
    A subscriber that fails to receive an event is dropped. When the queue
    is full new events are dropped.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, Subscriber] = {}
        self._alive: dict[str, bool] = {}
        self._queue: queue.Queue[str] = queue.Queue(maxsize=max_pending)
        self._idle = threading.Condition()
        self._pending = 0
        self._worker: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._subscribers

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers[subscriber.connection_id] = subscriber
            self._alive[subscriber.connection_id] = True

    def unsubscribe(self, connection_id: str) -> Subscriber | None:
        with self._lock:
            self._alive.pop(connection_id, None)
            return self._subscribers.pop(connection_id, None)

    def mark_alive(self, connection_id: str) -> None:
        """Record a pong from ``connection_id``."""
        with self._lock:
            if connection_id in self._subscribers:
                self._alive[connection_id] = True

    def _snapshot(self) -> list[Subscriber]:
        with self._lock:
            return list(self._subscribers.values())

    def publish(self, message: str, severity: Severity | str = Severity.INFO) -> ProgressEvent:
        event = ProgressEvent(message=message, severity=Severity(severity))
        if not len(self):
            return event

        self._ensure_worker()
        with self._idle:
            self._pending += 1
        try:
            self._queue.put_nowait(json.dumps(event.to_dict()))
        except queue.Full:
            LOGGER.warning("Progress queue full, dropping event: %s", message)
            self._task_done()
        return event

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued event has been delivered.

        Returns:
            True if the queue drained, False if ``timeout`` expired first
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._deliver_forever, name="progress-delivery", daemon=True
                )
                self._worker.start()

    def _deliver_forever(self) -> None:
        while True:
            payload = self._queue.get()
            try:
                self._deliver(payload)
            finally:
                self._task_done()

    def _task_done(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()

    def _deliver(self, payload: str) -> None:
        for subscriber in self._snapshot():
            try:
                subscriber.send(payload)
            except SubscriberGone:
                LOGGER.info("Progress subscriber %s is gone", subscriber.connection_id)
                self.unsubscribe(subscriber.connection_id)
            except Exception:
                LOGGER.exception(
                    "Dropping progress subscriber %s after send failure", subscriber.connection_id
                )
                self.unsubscribe(subscriber.connection_id)

    def heartbeat(self) -> list[str]:
        """Run one heartbeat pass.

        Subscribers that did not answer the previous ping are terminated and
        removed. Every other subscriber is pinged.

        Returns:
            Connection IDs removed during this pass
        """
        removed: list[str] = []
        for subscriber in self._snapshot():
            connection_id = subscriber.connection_id
            with self._lock:
                alive = self._alive.get(connection_id, False)
                self._alive[connection_id] = False

            if not alive:
                self.unsubscribe(connection_id)
                removed.append(connection_id)
                try:
                    subscriber.terminate()
                except Exception:
                    LOGGER.exception("Failed to terminate subscriber %s", connection_id)
                continue

            try:
                answered = subscriber.ping()
            except Exception:
                LOGGER.exception("Ping failed for subscriber %s", connection_id)
                answered = False
            if answered:
                self.mark_alive(connection_id)

        if removed:
            LOGGER.info("Heartbeat pruned %d progress subscriber(s)", len(removed))
        return removed


def _get_management_client(endpoint_url: str):
    """Get API Gateway management client (extracted for testing)."""
    return boto3.client(
        "apigatewaymanagementapi", endpoint_url=endpoint_url, config=_MANAGEMENT_CLIENT_CONFIG
    )


def _is_gone(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") == "GoneException"


class ApiGatewayWebSocketSubscriber:
    """Progress subscriber connected through an API Gateway WebSocket API."""

    def __init__(self, connection_id: str, endpoint_url: str, client=None) -> None:
        self.connection_id = connection_id
        self.endpoint_url = endpoint_url
        self._client = client or _get_management_client(endpoint_url)

    def send(self, payload: str) -> None:
        try:
            self._client.post_to_connection(
                ConnectionId=self.connection_id, Data=payload.encode("utf-8")
            )
        except ClientError as e:
            if _is_gone(e):
                raise SubscriberGone(self.connection_id) from e
            raise

    def ping(self) -> bool:
        """Ask API Gateway whether the connection still exists."""
        try:
            self._client.get_connection(ConnectionId=self.connection_id)
        except ClientError as e:
            if _is_gone(e):
                return False
            raise
        return True

    def terminate(self) -> None:
        try:
            self._client.delete_connection(ConnectionId=self.connection_id)
        except ClientError as e:
            if not _is_gone(e):
                raise
