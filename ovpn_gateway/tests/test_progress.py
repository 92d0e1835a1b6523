"""Tests for progress sinks."""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from ovpn_gateway.lib.models import Severity
from ovpn_gateway.lib.progress import (
    ApiGatewayWebSocketSubscriber,
    BroadcastProgressSink,
    LoggingProgressSink,
    NullProgressSink,
    SubscriberGone,
    _get_management_client,
)


class FakeSubscriber:
    """In-memory subscriber recording payloads."""

    def __init__(self, connection_id: str, answers_ping: bool = True) -> None:
        self.connection_id = connection_id
        self.answers_ping = answers_ping
        self.payloads: list[dict] = []
        self.pings = 0
        self.terminated = False

    def send(self, payload: str) -> None:
        self.payloads.append(json.loads(payload))

    def ping(self) -> bool:
        self.pings += 1
        return self.answers_ping

    def terminate(self) -> None:
        self.terminated = True


def _gone() -> ClientError:
    return ClientError({"Error": {"Code": "GoneException", "Message": "gone"}}, "PostToConnection")


class TestBroadcastPublish:
    """Tests for BroadcastProgressSink.publish."""

    def test_delivers_json_event_to_every_subscriber(self) -> None:
        """Each subscriber receives {timestamp, message, type}."""
        sink = BroadcastProgressSink()
        first, second = FakeSubscriber("a"), FakeSubscriber("b")
        sink.subscribe(first)
        sink.subscribe(second)

        sink.publish("Generating certificates...", Severity.INFO)
        assert sink.flush(timeout=2)

        for subscriber in (first, second):
            assert len(subscriber.payloads) == 1
            payload = subscriber.payloads[0]
            assert payload["message"] == "Generating certificates..."
            assert payload["type"] == "info"
            assert payload["timestamp"].endswith("Z")

    def test_accepts_string_severity(self) -> None:
        """Severity may be given as its string value."""
        event = BroadcastProgressSink().publish("careful", "warning")
        assert event.severity == Severity.WARNING

    def test_gone_subscriber_is_dropped(self) -> None:
        """Subscriber raising SubscriberGone is removed; others still receive."""
        sink = BroadcastProgressSink()
        gone = FakeSubscriber("gone")
        gone.send = MagicMock(side_effect=SubscriberGone("gone"))
        alive = FakeSubscriber("alive")
        sink.subscribe(gone)
        sink.subscribe(alive)

        sink.publish("hello")
        assert sink.flush(timeout=2)

        assert "gone" not in sink
        assert "alive" in sink
        assert alive.payloads[0]["message"] == "hello"

    def test_failing_subscriber_never_raises(self) -> None:
        """Unexpected send errors drop the subscriber without reaching the publisher."""
        sink = BroadcastProgressSink()
        broken = FakeSubscriber("broken")
        broken.send = MagicMock(side_effect=RuntimeError("socket reset"))
        sink.subscribe(broken)

        sink.publish("hello")
        assert sink.flush(timeout=2)

        assert len(sink) == 0

    def test_publish_without_subscribers(self) -> None:
        """Publishing with nobody listening is a no-op."""
        event = BroadcastProgressSink().publish("nobody home", Severity.SUCCESS)
        assert event.message == "nobody home"

    def test_slow_subscriber_does_not_delay_publisher(self) -> None:
        """Events are queued; a subscriber that takes seconds to receive never stalls publish."""
        sink = BroadcastProgressSink()
        release = threading.Event()
        slow = FakeSubscriber("slow")
        received: list[str] = []

        def slow_send(payload: str) -> None:
            release.wait(timeout=5)
            received.append(json.loads(payload)["message"])

        slow.send = slow_send
        sink.subscribe(slow)

        started = time.monotonic()
        for step in ("Cleaning up", "Generating", "Routing"):
            sink.publish(step)
        elapsed = time.monotonic() - started

        assert elapsed < 0.5
        assert sink.flush(timeout=0.1) is False
        release.set()
        assert sink.flush(timeout=5)
        assert received == ["Cleaning up", "Generating", "Routing"]

    def test_full_queue_drops_events_without_blocking(self) -> None:
        """When delivery falls behind past the queue bound, new events are dropped."""
        sink = BroadcastProgressSink(max_pending=1)
        release = threading.Event()
        stuck = FakeSubscriber("stuck")
        stuck.send = lambda payload: release.wait(timeout=5)
        sink.subscribe(stuck)

        started = time.monotonic()
        for index in range(20):
            sink.publish(f"event {index}")
        elapsed = time.monotonic() - started
        release.set()

        assert elapsed < 0.5
        assert sink.flush(timeout=5)


class TestBroadcastHeartbeat:
    """Tests for BroadcastProgressSink.heartbeat."""

    def test_pings_live_subscribers(self) -> None:
        """Responsive subscribers are pinged and kept."""
        sink = BroadcastProgressSink()
        subscriber = FakeSubscriber("a")
        sink.subscribe(subscriber)

        assert sink.heartbeat() == []
        assert sink.heartbeat() == []
        assert subscriber.pings == 2
        assert "a" in sink

    def test_terminates_subscriber_without_pong(self) -> None:
        """Subscriber that misses a ping is terminated on the next pass."""
        sink = BroadcastProgressSink()
        silent = FakeSubscriber("silent", answers_ping=False)
        sink.subscribe(silent)

        assert sink.heartbeat() == []
        assert sink.heartbeat() == ["silent"]
        assert silent.terminated
        assert len(sink) == 0

    def test_mark_alive_counts_as_pong(self) -> None:
        """Asynchronous pong via mark_alive keeps the subscriber."""
        sink = BroadcastProgressSink()
        silent = FakeSubscriber("late", answers_ping=False)
        sink.subscribe(silent)

        sink.heartbeat()
        sink.mark_alive("late")

        assert sink.heartbeat() == []
        assert "late" in sink

    def test_unsubscribe_removes(self) -> None:
        """unsubscribe returns and removes the subscriber."""
        sink = BroadcastProgressSink()
        subscriber = FakeSubscriber("a")
        sink.subscribe(subscriber)

        assert sink.unsubscribe("a") is subscriber
        assert sink.unsubscribe("a") is None


class TestApiGatewayWebSocketSubscriber:
    """Tests for ApiGatewayWebSocketSubscriber."""

    @pytest.fixture
    def mock_client(self) -> MagicMock:
        return MagicMock()

    def test_send_posts_to_connection(self, mock_client: MagicMock) -> None:
        """send() posts UTF-8 payload to the connection."""
        subscriber = ApiGatewayWebSocketSubscriber("conn-1", "https://ws.example/prod", mock_client)
        subscriber.send('{"message": "hi"}')

        mock_client.post_to_connection.assert_called_once_with(
            ConnectionId="conn-1", Data=b'{"message": "hi"}'
        )

    def test_send_raises_gone(self, mock_client: MagicMock) -> None:
        """GoneException becomes SubscriberGone."""
        mock_client.post_to_connection.side_effect = _gone()
        subscriber = ApiGatewayWebSocketSubscriber("conn-1", "https://ws.example/prod", mock_client)

        with pytest.raises(SubscriberGone):
            subscriber.send("{}")

    def test_send_reraises_other_errors(self, mock_client: MagicMock) -> None:
        """Other ClientErrors propagate."""
        mock_client.post_to_connection.side_effect = ClientError(
            {"Error": {"Code": "LimitExceededException", "Message": "slow down"}},
            "PostToConnection",
        )
        subscriber = ApiGatewayWebSocketSubscriber("conn-1", "https://ws.example/prod", mock_client)

        with pytest.raises(ClientError):
            subscriber.send("{}")

    def test_ping_reports_gone_connection(self, mock_client: MagicMock) -> None:
        """ping() is False once API Gateway forgets the connection."""
        subscriber = ApiGatewayWebSocketSubscriber("conn-1", "https://ws.example/prod", mock_client)
        assert subscriber.ping() is True

        mock_client.get_connection.side_effect = _gone()
        assert subscriber.ping() is False

    def test_terminate_ignores_gone(self, mock_client: MagicMock) -> None:
        """terminate() on an already closed connection does not raise."""
        mock_client.delete_connection.side_effect = _gone()
        subscriber = ApiGatewayWebSocketSubscriber("conn-1", "https://ws.example/prod", mock_client)
        subscriber.terminate()
        mock_client.delete_connection.assert_called_once_with(ConnectionId="conn-1")

    def test_management_client_uses_short_timeouts(self) -> None:
        """Delivery client makes one short attempt instead of boto3's default retries."""
        with patch("ovpn_gateway.lib.progress.boto3") as mock_boto3:
            _get_management_client("https://ws.example/prod")

        args, kwargs = mock_boto3.client.call_args
        assert args == ("apigatewaymanagementapi",)
        assert kwargs["endpoint_url"] == "https://ws.example/prod"
        assert kwargs["config"].read_timeout == 5
        assert kwargs["config"].retries == {"max_attempts": 1}


class TestSimpleSinks:
    """Tests for NullProgressSink and LoggingProgressSink."""

    def test_null_sink_returns_event(self) -> None:
        """NullProgressSink builds the event and drops it."""
        event = NullProgressSink().publish("ignored", Severity.ERROR)
        assert event.to_dict()["type"] == "error"

    def test_logging_sink_returns_event(self) -> None:
        """LoggingProgressSink returns the event it logged."""
        event = LoggingProgressSink().publish("Route added", "success")
        assert event.severity == Severity.SUCCESS
